import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from schemaform.constants import DEFAULT_PERSIST_TTL, PERSIST_DEBOUNCE_MS, STORAGE_KEY_PREFIX
from schemaform.exceptions import StorageError

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@runtime_checkable
class StorageBackend(Protocol):
    """Synchronous, origin-scoped key/value store holding strings."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryStorage:
    """In-memory storage engine implementation."""
    def __init__(self):
        self._storage: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._storage.get(key)

    def set(self, key: str, value: str) -> None:
        self._storage[key] = value

    def remove(self, key: str) -> None:
        self._storage.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._storage

    def __len__(self) -> int:
        return len(self._storage)


@dataclass
class PersistConfig:
    key: str
    ttl: int = DEFAULT_PERSIST_TTL
    on_error: Optional[Callable[[str, Exception], None]] = None

    @property
    def storage_key(self) -> str:
        return f"{STORAGE_KEY_PREFIX}{self.key}"


class PersistenceManager:
    """
    Best-effort persistence of form values.

    Writes are debounced: every ``schedule`` call restarts the quiet period
    and only the latest values are written once it elapses. Each record is
    stored as ``{"values": ..., "expires": epoch_ms}``. Read and write
    failures are reported through ``on_error`` (or logged) and never raised.
    """
    def __init__(self, config: PersistConfig, storage: StorageBackend,
                 clock: Optional[Callable[[], int]] = None, debounce_ms: int = PERSIST_DEBOUNCE_MS):
        self.config = config
        self.storage = storage
        self.clock = clock or now_ms
        self.debounce_ms = debounce_ms
        self._timer: Optional[asyncio.Task] = None
        self._pending: Optional[Dict[str, Any]] = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def schedule(self, values: Dict[str, Any]) -> None:
        """Schedules a write of ``values`` after the debounce window."""
        self._pending = dict(values)
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop to debounce on; write straight away.
            self.flush()
            return

        async def delayed_write():
            await asyncio.sleep(self.debounce_ms / 1000)
            self._timer = None
            self.flush()

        self._timer = loop.create_task(delayed_write())

    def flush(self) -> None:
        """Writes pending values now, if any."""
        self._cancel_timer()
        if self._pending is None:
            return
        values, self._pending = self._pending, None
        self.write(values)

    def cancel(self) -> None:
        """Drops the pending write."""
        self._cancel_timer()
        self._pending = None

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def write(self, values: Dict[str, Any]) -> None:
        record = {"values": values, "expires": self.clock() + self.config.ttl}
        try:
            payload = json.dumps(record)
            self.storage.set(self.config.storage_key, payload)
            logger.debug(f"Persisted {len(values)} values under '{self.config.storage_key}'")
        except Exception as e:
            self._emit_error("write", e)

    def load(self) -> Dict[str, Any]:
        """
        Reads the snapshot back. Missing, expired and corrupt records all
        yield an empty dict.
        """
        key = self.config.storage_key
        try:
            raw = self.storage.get(key)
        except Exception as e:
            self._emit_error("read", e)
            return {}
        if not raw:
            return {}

        try:
            record = json.loads(raw)
        except (TypeError, ValueError) as e:
            self._emit_error("read", e)
            self._prune(key)
            return {}

        values = record.get("values") if isinstance(record, dict) else None
        expires = record.get("expires") if isinstance(record, dict) else None
        if not isinstance(values, dict) or isinstance(expires, bool) or not isinstance(expires, (int, float)):
            self._emit_error("read", StorageError(f"Malformed record under '{key}'"))
            self._prune(key)
            return {}
        if expires <= self.clock():
            logger.debug(f"Snapshot under '{key}' expired")
            self._prune(key)
            return {}
        return values

    def _prune(self, key: str) -> None:
        remove = getattr(self.storage, "remove", None)
        if not callable(remove):
            return
        try:
            remove(key)
        except Exception as e:
            self._emit_error("write", e)

    def _emit_error(self, op: str, error: Exception) -> None:
        if not isinstance(error, StorageError):
            wrapped = StorageError(f"Storage {op} failed for '{self.config.storage_key}': {error}")
            wrapped.__cause__ = error
            error = wrapped
        if self.config.on_error is None:
            logger.warning(str(error))
            return
        try:
            self.config.on_error(op, error)
        except Exception as callback_error:
            logger.warning(f"Persistence on_error callback failed: {callback_error}")
