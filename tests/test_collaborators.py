from collaborators import BehaviorCollector, ExtensionPlatform, KeyValueStore, Notifier, ThreatModel
from fakes import FakeCollector, FakeModel, FakeNotifier, FakePlatform
from profile_store import JsonFileStore, MemoryStore


def test_fakes_satisfy_protocols():
    assert isinstance(FakeCollector(), BehaviorCollector)
    assert isinstance(FakePlatform(), ExtensionPlatform)
    assert isinstance(FakeNotifier(), Notifier)
    assert isinstance(FakeModel(), ThreatModel)


def test_stores_satisfy_protocol(tmp_path):
    assert isinstance(MemoryStore(), KeyValueStore)
    assert isinstance(JsonFileStore(tmp_path), KeyValueStore)


def test_model_without_predict_is_rejected():
    class NotAModel:
        def classify(self, vectors):
            return []

    assert not isinstance(NotAModel(), ThreatModel)
