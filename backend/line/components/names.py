"""Display-name resolution for +1 / -1 without a name."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from cachetools import TTLCache  # type: ignore[import-untyped]

from shared.cache import MISSING, AsyncTTLCache, cached

from line.core.interfaces import ProfileLookup

LOGGER = logging.getLogger("Names")

FALLBACK_NAME = "球友"
NAME_TTL = 24 * 60 * 60


def _key(gid: str, uid: str) -> str:
    return f"{gid}_{uid}"


class NameResolver:
    """Resolve a caller's display name, spending as few profile calls as possible.

    Order: fresh cache, then the name this user last signed up with (only if
    it is still on the list), then the profile API. API failures fall back to
    the last known name, then to ``球友``.
    """

    def __init__(self, profiles: ProfileLookup, maxsize: int = 1000, ttl: float = NAME_TTL):
        self.profiles = profiles
        self.cache = AsyncTTLCache(maxsize=maxsize, ttl=ttl)
        self._signed_up_as: TTLCache = TTLCache(maxsize=maxsize * 5, ttl=ttl)
        self._lookup = cached(self.cache, key_func=_key)(self._fetch)

    async def _fetch(self, gid: str, uid: str) -> str:
        return await self.profiles.display_name(gid, uid)

    async def lookup(self, gid: str, uid: str) -> str:
        try:
            return await self._lookup(gid, uid)
        except Exception as e:
            LOGGER.warning(f"Display name lookup failed for {uid} in {gid}: {e}")
            return FALLBACK_NAME

    async def resolve(self, gid: str, uid: str, current: Iterable[str] = ()) -> str:
        key = _key(gid, uid)
        name = self.cache.get(key)
        if name is not MISSING:
            return name

        known = self._signed_up_as.get(key)
        if known is not None and known in set(current):
            return known

        name = await self.lookup(gid, uid)
        self._signed_up_as[key] = name
        return name

    def sweep(self) -> None:
        self.cache.sweep()
        self._signed_up_as.expire()
