"""
Cache keys, ETags and conditional responses for activity payloads.

Nothing here stores anything: keys and validators are derived from the
request and the payload, and storage is left to whatever sits in front of
the response (browser, CDN, in-memory layer). Key and ETag generation never
raise; they log a warning and fall back to a timestamp-derived value.
"""

import dataclasses
import gzip
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

from .config import CacheTTL, settings
from .domain import CacheEntry
from .log_sanitizer import get_logger

log = get_logger(__name__)

BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass(frozen=True)
class CacheOptions:
    max_age: int = settings.cache_max_age
    stale_while_revalidate: Optional[int] = None
    is_private: bool = True
    etag: Optional[str] = None
    cache_control: Optional[str] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)
    compress: bool = False
    accept_encoding: Optional[str] = None


@dataclass(frozen=True)
class CachedResponse:
    status: int
    headers: Dict[str, str]
    body: Optional[bytes] = None

    def json(self) -> Any:
        """Decode the (possibly gzipped) body."""
        if self.body is None:
            return None
        raw = self.body
        if self.headers.get("Content-Encoding") == "gzip":
            raw = gzip.decompress(raw)
        return json.loads(raw.decode("utf-8"))


def _base36(number: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36[rem])
    return "".join(reversed(digits)) or "0"


def _timestamp_token() -> str:
    return _base36(int(time.time() * 1000))


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(payload: Any) -> str:
    """Serialization with sorted keys and no insignificant whitespace."""
    return json.dumps(
        payload,
        default=_to_jsonable,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set, frozenset)):
        if not value:
            return "empty"
        return ",".join(sorted(_format_value(v) for v in value))
    if isinstance(value, Mapping):
        return canonical_json(value)
    return str(value)


def cache_key(params: Mapping[str, Any], namespace: Optional[str] = None) -> str:
    """
    Deterministic key for a parameter set.

    Top-level keys are sorted, list values are sorted and nested mappings are
    serialized with sorted keys, so construction order never changes the key:
    ``namespace:key1:val1:key2:val2``.
    """
    try:
        parts = [namespace] if namespace else []
        for key in sorted(params):
            parts.append(f"{key}:{_format_value(params[key])}")
        return ":".join(parts)
    except Exception as e:
        log.warning("Error generating cache key", data={"error": e})
        return f"fallback:{_timestamp_token()}"


def etag(payload: Any) -> str:
    """Quoted MD5 of the canonical JSON form of ``payload``."""
    try:
        digest = hashlib.md5(canonical_json(payload).encode("utf-8")).hexdigest()
        return f'"{digest}"'
    except Exception as e:
        log.warning("Error generating ETag", data={"error": e})
        return f'"{_timestamp_token()}"'


def is_fresh(if_none_match: Optional[str], current_etag: str) -> bool:
    """True when ``If-None-Match`` lists ``current_etag``."""
    if not if_none_match:
        return False
    if if_none_match.strip() == current_etag:
        return True
    return current_etag in (tag.strip() for tag in if_none_match.split(","))


def encoded_etag(tag: str, content_encoding: Optional[str]) -> str:
    """
    Validator for one content-coding of a representation.

    Strong ETags must differ between the gzip and identity bodies, so the
    coding is appended inside the quotes: ``"abc"`` becomes ``"abc-gzip"``.
    """
    if not content_encoding or not tag.endswith('"'):
        return tag
    return f'{tag[:-1]}-{content_encoding}"'


def matching_etag(if_none_match: Optional[str], tag: str) -> Optional[str]:
    """The variant of ``tag`` listed in ``If-None-Match``, if any."""
    for candidate in (tag, encoded_etag(tag, "gzip")):
        if is_fresh(if_none_match, candidate):
            return candidate
    return None


def build_cache_control(
    max_age: int = CacheTTL.SHORT,
    stale_while_revalidate: Optional[int] = None,
    is_private: bool = True,
) -> str:
    if stale_while_revalidate is None:
        stale_while_revalidate = max_age * 2
    privacy = "private" if is_private else "public"
    return f"{privacy}, max-age={max_age}, stale-while-revalidate={stale_while_revalidate}"


def _cache_control_for(options: CacheOptions) -> str:
    return options.cache_control or build_cache_control(
        options.max_age, options.stale_while_revalidate, options.is_private
    )


def accepts_gzip(accept_encoding: Optional[str]) -> bool:
    if not accept_encoding:
        return False
    for part in accept_encoding.split(","):
        coding, _, params = part.strip().partition(";")
        if coding.strip().lower() in ("gzip", "*"):
            return params.replace(" ", "") not in ("q=0", "q=0.0", "q=0.00", "q=0.000")
    return False


def respond(
    payload: Any, status: int = 200, options: Optional[CacheOptions] = None
) -> CachedResponse:
    """
    JSON response carrying ETag and Cache-Control.

    With ``compress`` set and a client that accepts gzip, bodies larger than
    the compression threshold are gzipped.
    """
    options = options or CacheOptions()
    tag = options.etag or etag(payload)
    headers = {
        "Content-Type": "application/json",
        "ETag": tag,
        "Cache-Control": _cache_control_for(options),
    }
    headers.update(options.extra_headers)

    body = json.dumps(payload, default=_to_jsonable).encode("utf-8")
    if (
        options.compress
        and accepts_gzip(options.accept_encoding)
        and len(body) > settings.compression_threshold_bytes
    ):
        compressed = gzip.compress(body)
        log.debug(
            "Compressed response body",
            data={"original": len(body), "compressed": len(compressed)},
        )
        body = compressed
        headers["Content-Encoding"] = "gzip"
        headers["ETag"] = encoded_etag(tag, "gzip")
        headers["Vary"] = "Accept-Encoding"

    return CachedResponse(status=status, headers=headers, body=body)


def not_modified(tag: str, cache_control: Optional[str] = None) -> CachedResponse:
    """Bodyless 304 carrying only the validator and freshness policy."""
    headers = {"ETag": tag}
    if cache_control:
        headers["Cache-Control"] = cache_control
    return CachedResponse(status=304, headers=headers, body=None)


def conditional_respond(
    payload: Any,
    if_none_match: Optional[str],
    options: Optional[CacheOptions] = None,
) -> CachedResponse:
    """304 when the client's validator still matches, full response otherwise."""
    options = options or CacheOptions()
    tag = options.etag or etag(payload)
    matched = matching_etag(if_none_match, tag)
    if matched is not None:
        return not_modified(matched, _cache_control_for(options))
    return respond(payload, 200, dataclasses.replace(options, etag=tag))


class MemoryCacheStore:
    """
    Process-local store of recent cache entries, used to answer repeat
    conditional requests without re-running the aggregation. Entries expire
    after their ``max_age_seconds``; expired entries are purged on every
    write and the oldest entries are evicted beyond ``max_entries``.
    """

    def __init__(self, clock=time.monotonic, max_entries: int = settings.cache_max_entries):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._clock = clock
        self.max_entries = max_entries
        self._entries: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        item = self._entries.get(key)
        if item is None:
            return None
        entry, expires_at = item
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return entry

    def set(self, entry: CacheEntry) -> None:
        now = self._clock()
        self.purge_expired(now)
        self._entries.pop(entry.key, None)
        self._entries[entry.key] = (entry, now + entry.max_age_seconds)
        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock() if now is None else now
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


def build_cache_entry(
    params: Mapping[str, Any],
    payload: Any,
    namespace: Optional[str] = None,
    options: Optional[CacheOptions] = None,
) -> CacheEntry:
    options = options or CacheOptions()
    max_age = options.max_age
    swr = options.stale_while_revalidate
    return CacheEntry(
        key=cache_key(params, namespace),
        etag=options.etag or etag(payload),
        payload=payload,
        max_age_seconds=max_age,
        stale_while_revalidate_seconds=swr if swr is not None else max_age * 2,
        is_private=options.is_private,
    )
