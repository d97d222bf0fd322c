"""Store contract shared by the session services and the views.

Paths are slash separated (``rooms/ABC123/participants/<id>``). Values are
JSON-compatible trees. Dict values are addressed per key, everything else
(numbers, strings, lists) is a leaf. ``None`` and empty dicts mean "absent".
"""

import copy
import logging
import secrets
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from relay.errors import StoreFailure

logger = logging.getLogger(__name__)


def split_path(path: str) -> List[str]:
    parts = [p for p in (path or '').strip('/').split('/') if p]
    if not parts:
        raise ValueError('empty store path')
    return parts


def join_path(*parts: str) -> str:
    return '/'.join(str(p).strip('/') for p in parts if str(p).strip('/'))


def paths_related(a: str, b: str) -> bool:
    """True when one path is the other, an ancestor of it or a descendant."""
    return a == b or a.startswith(b + '/') or b.startswith(a + '/')


def compact(value: Any) -> Any:
    """Drop ``None`` entries and empty dicts, recursively."""
    if isinstance(value, dict):
        out = {}
        for key, child in value.items():
            child = compact(child)
            if child is None:
                continue
            out[str(key)] = child
        return out or None
    return value


class Subscription:
    """Handle returned by ``SyncChannel.subscribe``; ``cancel()`` detaches it."""

    def __init__(self, channel: 'SyncChannel', path: str, on_value: Callable[[Any], None]):
        self.channel = channel
        self.path = path
        self.on_value = on_value
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self.channel._detach(self)

    def deliver(self, value: Any) -> None:
        if not self.active:
            return
        try:
            self.on_value(value)
        except Exception:
            logger.exception(f"[observer-error] path={self.path}")


class SyncChannel:
    """Base class: observer bookkeeping plus the primitive store operations.

    Subclasses implement the storage primitives and call ``_notify(path)``
    after every successful mutation. Subscribers always receive the full
    current value of the path they subscribed to, never a delta.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._subs_lock = threading.Lock()

    # -- storage primitives -------------------------------------------------

    def read(self, path: str) -> Any:
        raise NotImplementedError

    def write(self, path: str, value: Any) -> None:
        raise NotImplementedError

    def merge(self, path: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    def remove(self, path: str) -> None:
        raise NotImplementedError

    def increment(self, path: str, delta: int) -> int:
        """Atomically add ``delta`` to a numeric leaf and return the new value."""
        raise NotImplementedError

    def create_if_absent(self, path: str, value: Any) -> bool:
        """Write ``value`` only if nothing exists at ``path``. Returns whether it wrote."""
        raise NotImplementedError

    def create_child(self, path: str) -> str:
        """Return a fresh, time-ordered key for a new child of ``path``."""
        split_path(path)
        return f"{int(time.time() * 1000):013x}{secrets.token_hex(4)}"

    # -- subscriptions ------------------------------------------------------

    def subscribe(self, path: str, on_value: Callable[[Any], None]) -> Subscription:
        path = join_path(*split_path(path))
        sub = Subscription(self, path, on_value)
        with self._subs_lock:
            self._subscriptions.append(sub)
        try:
            current = self.read(path)
        except StoreFailure:
            sub.cancel()
            raise
        sub.deliver(current)
        return sub

    def subscriber_count(self, path: Optional[str] = None) -> int:
        with self._subs_lock:
            if path is None:
                return len(self._subscriptions)
            return sum(1 for s in self._subscriptions if s.path == path)

    def _detach(self, sub: Subscription) -> None:
        with self._subs_lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def _notify(self, changed_path: str) -> None:
        with self._subs_lock:
            targets = [s for s in self._subscriptions if paths_related(s.path, changed_path)]
        values: Dict[str, Any] = {}
        for sub in targets:
            if sub.path not in values:
                try:
                    values[sub.path] = self.read(sub.path)
                except StoreFailure:
                    logger.warning(f"[notify-fail] path={sub.path} changed={changed_path}")
                    continue
            sub.deliver(copy.deepcopy(values[sub.path]))


class MemoryChannel(SyncChannel):
    """In-process tree. Used for single-process deployments and tests."""

    def __init__(self):
        super().__init__()
        self._root: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def _lookup(self, parts):
        node = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _set(self, parts, value) -> None:
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)
        self._prune(parts[:-1])

    def _prune(self, parts) -> None:
        while parts:
            node = self._lookup(parts)
            if isinstance(node, dict) and not node:
                parent = self._lookup(parts[:-1]) if len(parts) > 1 else self._root
                parent.pop(parts[-1], None)
                parts = parts[:-1]
            else:
                break

    def read(self, path):
        with self._lock:
            return copy.deepcopy(self._lookup(split_path(path)))

    def write(self, path, value):
        parts = split_path(path)
        with self._lock:
            self._set(parts, compact(value))
        self._notify(join_path(*parts))

    def merge(self, path, fields):
        parts = split_path(path)
        with self._lock:
            for key, value in (fields or {}).items():
                self._set(parts + [str(key)], compact(value))
        self._notify(join_path(*parts))

    def remove(self, path):
        parts = split_path(path)
        with self._lock:
            self._set(parts, None)
        self._notify(join_path(*parts))

    def increment(self, path, delta):
        parts = split_path(path)
        with self._lock:
            current = self._lookup(parts)
            if current is None:
                current = 0
            if isinstance(current, bool) or not isinstance(current, (int, float)):
                raise StoreFailure(f'{path} is not a numeric leaf')
            new_value = current + delta
            self._set(parts, new_value)
        self._notify(join_path(*parts))
        return new_value

    def create_if_absent(self, path, value):
        parts = split_path(path)
        with self._lock:
            if self._lookup(parts) is not None:
                return False
            self._set(parts, compact(value))
        self._notify(join_path(*parts))
        return True
