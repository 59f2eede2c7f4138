import os
import sys

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.abspath(os.path.join(TESTS_DIR, '..', 'src')))
sys.path.insert(0, TESTS_DIR)

import pytest

from fakes import FakeClock, FakeCollector, FakeModel, FakeNotifier, FakePlatform
from profile_store import MemoryStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def collector():
    return FakeCollector()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def model():
    return FakeModel()
