"""Tiny in-process TTL cache for judge metadata (languages, statuses).

Entries expire on a monotonic clock. ``JUDGE0_METADATA_CACHE_DISABLED=true``
turns every lookup into a miss, which is handy when pointing the engine at a
judge whose language set changes under it.
"""
from __future__ import annotations

import os
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

_DEFAULT_TTL = int(os.getenv("JUDGE0_METADATA_CACHE_SECONDS", "600"))
_DISABLED = os.getenv("JUDGE0_METADATA_CACHE_DISABLED", "false").lower() == "true"

_STORE: Dict[str, Tuple[Any, float]] = {}


def get(key: str) -> Any | None:
    if _DISABLED:
        return None
    entry = _STORE.get(key)
    if entry is None:
        return None
    value, expires_at = entry
    if time.monotonic() >= expires_at:
        del _STORE[key]
        return None
    return value


def set(key: str, value: Any, ttl: Optional[int] = None) -> None:
    if _DISABLED:
        return
    lifetime = max(1, int(_DEFAULT_TTL if ttl is None else ttl))
    _STORE[key] = (value, time.monotonic() + lifetime)


async def get_or_load(key: str, loader: Callable[[], Awaitable[Any]], ttl: Optional[int] = None) -> Any:
    """Return the cached value for ``key`` or await ``loader`` and cache its result.

    Loader errors propagate and nothing is cached.
    """
    hit = get(key)
    if hit is not None:
        return hit
    value = await loader()
    set(key, value, ttl=ttl)
    return value


def clear(prefix: Optional[str] = None) -> None:
    if prefix is None:
        _STORE.clear()
        return
    for key in [k for k in _STORE if k.startswith(prefix)]:
        del _STORE[key]
