"""
Utility functions for acc.

Provides encoding, time and reference helpers shared across modules.
"""

import base64
import binascii
import re
from datetime import datetime, timezone
from typing import Optional


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """
    Base64 decode string to bytes.

    Raises:
        ValueError: if the input is not valid base64
    """
    try:
        return base64.b64decode(s.strip().encode('ascii'), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"invalid base64: {e}") from e


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def utc_rfc3339(dt: Optional[datetime] = None) -> str:
    """Format a datetime as an RFC3339 UTC string (second precision)."""
    dt = dt or utc_now()
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_rfc3339(s: str) -> datetime:
    """
    Parse an RFC3339 timestamp into an aware datetime.

    Accepts a trailing 'Z' or an explicit offset, with optional fractional
    seconds. A timestamp without offset is rejected.

    Raises:
        ValueError: if the string is not RFC3339
    """
    value = s.strip()
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        raise ValueError(f"timestamp has no UTC offset: {s}")
    return dt


def normalize_digest(digest: Optional[str]) -> str:
    """Normalize an image digest: trimmed, lowercase, no 'sha256:' prefix."""
    if not digest:
        return ""
    d = digest.strip().lower()
    if d.startswith("sha256:"):
        d = d[len("sha256:"):]
    return d


def digest_from_ref(image_ref: str) -> Optional[str]:
    """Extract the digest from a 'name@sha256:...' reference, if any."""
    if "@" not in image_ref:
        return None
    digest = image_ref.rsplit("@", 1)[1]
    if not digest.startswith("sha256:"):
        return None
    return digest


_UNSAFE_PATH_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


def sanitize_ref(image_ref: str) -> str:
    """Turn an image reference into a filesystem-safe directory name."""
    return _UNSAFE_PATH_CHARS.sub('_', image_ref).strip('_') or "unknown"
