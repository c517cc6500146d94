"""Content identity derivation.

A ContentKey is ``content_<n>`` where ``n`` is the absolute value of a
32-bit polynomial rolling hash over a basis string built from the
platform and the normalized title (or series title for episodes). The
arithmetic mirrors two's-complement int32 wraparound so that keys stay
compatible with records written by other clients of the same store.
"""
import re
from typing import Optional

from .models import CONTENT_KEY_PREFIX, ContentType

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_token(value: Optional[str]) -> str:
    return _NON_ALNUM.sub("", (value or "").lower())


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def rolling_hash(basis: str) -> int:
    """hash = hash * 31 + code_unit over UTF-16 code units, wrapped to int32 each step."""
    encoded = basis.encode("utf-16-le", errors="surrogatepass")
    result = 0
    for offset in range(0, len(encoded), 2):
        code_unit = int.from_bytes(encoded[offset:offset + 2], "little")
        result = _to_int32((result << 5) - result + code_unit)
    return result


def derive_content_key(
    url: Optional[str] = None,
    title: Optional[str] = None,
    platform: Optional[str] = None,
    content_type: Optional[str] = None,
    series_title: Optional[str] = None,
) -> str:
    safe_url = url.split("?")[0] if isinstance(url, str) else ""
    normalized_platform = (platform or "").lower()

    if content_type == ContentType.EPISODE.value and series_title:
        basis = f"{normalized_platform}|series|{normalize_token(series_title)}"
    else:
        basis = f"{normalized_platform}|title|{normalize_token(title) or normalize_token(safe_url)}"

    if not basis.strip("|"):
        basis = f"{normalized_platform}|fallback|{normalize_token(safe_url)}"

    return f"{CONTENT_KEY_PREFIX}{abs(rolling_hash(basis))}"
