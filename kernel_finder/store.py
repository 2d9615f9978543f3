"""
Key-value stores for persisted kernel caches.

The finder only relies on the key/version contract: ``get(key, default)``
returns what was last written with ``set(key, value)``. Two implementations
ship with the package: an in-memory store and a JSON file store.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

# Prefix of the per-server remote kernel cache keys; keys are "<prefix>-<serverId>"
REMOTE_KERNEL_SPECS_CACHE_KEY = "JUPYTER_REMOTE_KERNELSPECS_V4"

# Keys written by earlier releases, removed on the next cache write
OLD_CACHE_KEY_PREFIXES = (
    "JUPYTER_LOCAL_KERNELSPECS",
    "JUPYTER_LOCAL_KERNELSPECS_V1",
    "JUPYTER_LOCAL_KERNELSPECS_V2",
    "JUPYTER_LOCAL_KERNELSPECS_V3",
    "JUPYTER_REMOTE_KERNELSPECS",
    "JUPYTER_REMOTE_KERNELSPECS_V1",
    "JUPYTER_REMOTE_KERNELSPECS_V2",
    "JUPYTER_REMOTE_KERNELSPECS_V3",
)


class Store(ABC):
    """Versioned key-value storage capability."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class InMemoryStore(Store):
    """Process-local store; values are deep-copied through JSON."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return json.loads(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, default=str)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(Store):
    """
    Store backed by a single JSON file.

    Usage:
        store = JsonFileStore(Path("~/.cache/kernel_finder/state.json").expanduser())
        await store.set("key", {"kernels": [], "schema_version": "0.4.2"})
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data = self._load()
        # Saves run one at a time; each writes a snapshot taken on the loop thread
        self._save_lock = asyncio.Lock()

    def _load(self) -> Dict[str, Any]:
        if self.path.exists():
            try:
                return json.loads(self.path.read_text(encoding="utf-8"))
            except Exception as e:
                logger.warning(f"Failed to load store {self.path}: {e}")
        return {}

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(self.path)

    async def _save(self) -> None:
        async with self._save_lock:
            payload = json.dumps(self._data, indent=2, default=str)
            await asyncio.get_running_loop().run_in_executor(None, self._write, payload)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        await self._save()

    def keys(self) -> List[str]:
        return list(self._data.keys())

    async def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            await self._save()


def _is_old_key(key: str, prefixes: Iterable[str]) -> bool:
    return any(key == prefix or key.startswith(f"{prefix}-") for prefix in prefixes)


async def remove_old_cached_items(store: Store, prefixes: Iterable[str] = OLD_CACHE_KEY_PREFIXES) -> int:
    """Delete keys written by earlier releases; returns how many were removed."""
    prefixes = tuple(prefixes)
    stale = [key for key in store.keys() if _is_old_key(key, prefixes)]
    for key in stale:
        await store.delete(key)
    if stale:
        logger.debug(f"Removed {len(stale)} stale cache entries")
    return len(stale)
