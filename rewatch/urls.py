import logging
from typing import Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: Optional[str]) -> Optional[str]:
    """Reduce a URL to scheme, host and path; query and fragment are dropped."""
    if not url or not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
        if not parts.scheme or not parts.hostname:
            raise ValueError(f"not an absolute URL: {url!r}")
        host = parts.hostname
        port = parts.port  # raises ValueError on garbage ports
        if port is not None and port != _DEFAULT_PORTS.get(parts.scheme.lower()):
            host = f"{host}:{port}"
        return f"{parts.scheme.lower()}://{host}{parts.path or '/'}"
    except ValueError as e:
        logger.debug(f"Failed to normalize URL: {e}")
        return url.split("#")[0].split("?")[0]


def urls_roughly_match(candidate: Optional[str], target: Optional[str]) -> bool:
    normalized_candidate = normalize_url(candidate)
    normalized_target = normalize_url(target)
    if normalized_candidate and normalized_target and normalized_candidate == normalized_target:
        return True
    if not candidate or not target:
        return False
    # Tolerate trailing path variants such as /watch/1 vs /watch/1/details
    return candidate in target or target in candidate
