"""
Host wildcard patterns and trace ids.

Patterns such as "*.example.com" or "shop.*" are matched against the
hostname of a URL. `*` matches any run of characters (including dots),
every other character is literal, and the whole hostname must match.
"""

import re
import secrets
from functools import lru_cache
from urllib.parse import urlparse

from pdpkit.utils.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=256)
def pattern_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a host wildcard pattern into an anchored regex."""
    escaped = re.escape(pattern.strip()).replace(r"\*", ".*")
    return re.compile(f"^{escaped}$", re.IGNORECASE)


def hostname_of(url: str) -> str | None:
    """Return the lower-cased hostname of `url`, or None when it has none."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host or None


def match_host(hostname: str, pattern: str) -> bool:
    """Check whether a hostname matches a wildcard pattern."""
    if not pattern or not pattern.strip():
        return False
    return bool(pattern_to_regex(pattern).match(hostname))


def should_run(url: str, allowlist: list[str]) -> bool:
    """Decide whether processing is enabled for `url`.

    An empty allowlist enables every page. A URL without a hostname never
    runs when an allowlist is configured.
    """
    if not allowlist:
        return True
    host = hostname_of(url)
    if host is None:
        logger.debug("URL has no hostname, not running", url=url)
        return False
    return any(match_host(host, pattern) for pattern in allowlist)


def make_trace_id() -> str:
    """Generate a request trace id of the form `pdp-<16 hex chars>`."""
    return f"pdp-{secrets.token_hex(8)}"
