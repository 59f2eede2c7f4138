"""
Profile Store
Flat key -> JSON value persistence used for behavior profiles, extension
profiles, block records, anomaly history and stats.

Two backends:
    store = MemoryStore()                     # tests, ephemeral sessions
    store = JsonFileStore('data/profiles')    # one JSON file per key

All operations are coroutines so callers can swap in a remote backend; file
I/O here is small and done inline. Failures raise StoreError.
"""

import asyncio
import json
from pathlib import Path

from loguru import logger

from errors import StoreError


class BaseStore:
    """Shared helpers on top of get / set."""

    _counter_lock = None

    async def increment(self, key, field, amount=1):
        """Read-modify-write a numeric field of a stored dict; returns the new value."""
        if self._counter_lock is None:
            self._counter_lock = asyncio.Lock()
        async with self._counter_lock:
            data = await self.get(key) or {}
            data[field] = data.get(field, 0) + amount
            await self.set(key, data)
            return data[field]


class MemoryStore(BaseStore):
    """In-process store. Values are JSON round-tripped so callers never share state."""

    def __init__(self):
        self._data = {}

    async def get(self, key, default=None):
        if key not in self._data:
            return default
        return json.loads(self._data[key])

    async def set(self, key, value):
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Value for {key} is not JSON serializable: {e}") from e

    async def remove(self, key):
        self._data.pop(key, None)

    async def items(self, prefix=''):
        return {k: json.loads(v) for k, v in self._data.items() if k.startswith(prefix)}

    async def keys(self, prefix=''):
        return [k for k in self._data if k.startswith(prefix)]


class JsonFileStore(BaseStore):
    """One JSON file per key under storage_dir."""

    def __init__(self, storage_dir=None):
        self.storage_dir = Path(storage_dir or 'data/profiles')
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _key_path(self, key):
        safe_key = key.replace('/', '_').replace('\\', '_')
        return self.storage_dir / f'{safe_key}.json'

    def _key_from_path(self, path):
        return path.stem

    async def get(self, key, default=None):
        path = self._key_path(key)
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read {path}: {e}") from e

    async def set(self, key, value):
        path = self._key_path(key)
        tmp_path = path.with_suffix('.json.tmp')
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(value, f, indent=2)
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise StoreError(f"Cannot write {path}: {e}") from e

    async def remove(self, key):
        path = self._key_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreError(f"Cannot remove {path}: {e}") from e

    async def keys(self, prefix=''):
        return sorted(
            self._key_from_path(p) for p in self.storage_dir.glob('*.json')
            if self._key_from_path(p).startswith(prefix)
        )

    async def items(self, prefix=''):
        result = {}
        for key in await self.keys(prefix):
            try:
                result[key] = await self.get(key)
            except StoreError as e:
                logger.warning(f"[Store] Skipping unreadable entry {key}: {e}")
        return result


def create_store(storage_dir=None):
    """File-backed store when a directory is configured, in-memory otherwise."""
    if storage_dir:
        return JsonFileStore(storage_dir)
    return MemoryStore()

