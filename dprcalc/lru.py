import collections
import contextlib
import logging
import threading
import typing

from dprcalc import config

logger = logging.getLogger(__name__)


class LRUCache:
    def __init__(self, name: str, max_size: int = 1000, enabled: bool = True) -> None:
        self.name = name
        self.max_size = max_size
        self.enabled = enabled
        self.hits = 0
        self.misses = 0
        self._entries: "collections.OrderedDict[typing.Hashable, typing.Any]" = collections.OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: typing.Hashable) -> typing.Any:
        if not self.enabled:
            return None
        with self._lock:
            if key not in self._entries:
                self.misses += 1
                return None
            self.hits += 1
            self._entries.move_to_end(key)
            return self._entries[key]

    def set(self, key: typing.Hashable, value: typing.Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("%s cache full, evicted %r", self.name, evicted)

    def delete(self, key: typing.Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def has(self, key: typing.Hashable) -> bool:
        return self.enabled and key in self._entries

    def keys(self) -> typing.List[typing.Hashable]:
        with self._lock:
            return list(self._entries.keys())

    def values(self) -> typing.List[typing.Any]:
        with self._lock:
            return list(self._entries.values())

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: typing.Hashable) -> bool:
        return self.has(key)

    def __repr__(self) -> str:
        return "LRUCache(%s, %d/%d%s)" % (
            self.name,
            len(self._entries),
            self.max_size,
            "" if self.enabled else ", disabled",
        )


class CacheSet:
    """The memo tables shared by one evaluation context.

    ``pmf`` holds convolution and power results, ``resolve`` holds resolved
    expression nodes, ``die`` holds single-die distributions and ``parse``
    holds parsed textual expressions.
    """

    NAMES = ("pmf", "resolve", "die", "parse")

    def __init__(self, max_size: int = 1000, enabled: bool = True) -> None:
        self.pmf = LRUCache("pmf", max_size, enabled)
        self.resolve = LRUCache("resolve", max_size, enabled)
        self.die = LRUCache("die", max_size, enabled)
        self.parse = LRUCache("parse", max_size, enabled)

    @classmethod
    def from_settings(cls, settings: typing.Optional[config.Settings] = None) -> "CacheSet":
        if settings is None:
            settings = config.get_settings()
        return cls(settings.cache_size, settings.cache_enabled)

    @classmethod
    def disabled(cls) -> "CacheSet":
        return cls(enabled=False)

    def caches(self) -> typing.List[LRUCache]:
        return [getattr(self, name) for name in self.NAMES]

    def set_enabled(self, enabled: bool) -> None:
        for cache in self.caches():
            cache.enabled = enabled

    def clear(self) -> None:
        for cache in self.caches():
            cache.clear()

    def sizes(self) -> typing.Dict[str, int]:
        return {name: len(getattr(self, name)) for name in self.NAMES}


_default: typing.Optional[CacheSet] = None
_stack: typing.List[CacheSet] = []


def default_caches() -> CacheSet:
    global _default
    if _default is None:
        _default = CacheSet.from_settings()
    return _default


def reset_default_caches() -> CacheSet:
    global _default
    _default = CacheSet.from_settings()
    return _default


def active_caches() -> CacheSet:
    if _stack:
        return _stack[-1]
    return default_caches()


@contextlib.contextmanager
def use_caches(caches: CacheSet) -> typing.Iterator[CacheSet]:
    _stack.append(caches)
    try:
        yield caches
    finally:
        _stack.pop()


def clear_caches() -> None:
    active_caches().clear()


def set_caching_enabled(enabled: bool) -> None:
    active_caches().set_enabled(enabled)
