"""
Acquisition of the duckchat session token (``vqd``).

The upstream does not hand the token out through a documented API. It shows up
in the landing page HTML, inside bundled script assets, or as a response header
of the status endpoint. Each place is covered by a pure extraction strategy
(``body -> Optional[token]``) and :class:`TokenProvider` walks them in order.
"""

import logging
import re
import time
from typing import Callable, List, Optional, Sequence

from .config import Settings
from .ddg_client import DuckChatClient
from .ddg_models import UpstreamCredential
from .errors import TokenUnavailable, UpstreamError

logger = logging.getLogger(__name__)

Extractor = Callable[[str], Optional[str]]

HTML_TOKEN_PATTERNS = [
    re.compile(r"""vqd=["']([^"']+)["']"""),
    re.compile(r"""vqd[:=]["']([^"']+)["']"""),
    re.compile(r'"vqd":"([^"]+)"'),
    re.compile(r"'vqd':'([^']+)'"),
]

ASSET_TOKEN_PATTERNS = [
    re.compile(r"""vqd\s*[:=]\s*["']([^"']+)["']"""),
    re.compile(r'"vqd"\s*:\s*"([^"]+)"'),
]

FALLBACK_TOKEN_PATTERNS = ASSET_TOKEN_PATTERNS + [
    re.compile(r"'vqd'\s*:\s*'([^']+)'"),
]

SCRIPT_ASSET_PATTERN = re.compile(r"""(/dist/[^"']+\.js)""")

FALLBACK_ASSET_PATHS = ["/duck.js", "/chat.js", "/d.js"]

TOKEN_HEADER = "x-vqd-4"


def pattern_extractor(patterns: Sequence[re.Pattern]) -> Extractor:
    """Build a strategy returning the first group of the first matching pattern."""
    def extract(body: str) -> Optional[str]:
        for pattern in patterns:
            m = pattern.search(body or "")
            if m:
                return m.group(1)
        return None
    return extract


extract_from_html = pattern_extractor(HTML_TOKEN_PATTERNS)
extract_from_asset = pattern_extractor(ASSET_TOKEN_PATTERNS)
extract_from_fallback_asset = pattern_extractor(FALLBACK_TOKEN_PATTERNS)


def find_script_assets(html: str) -> List[str]:
    """Script bundle paths referenced by the landing page, in document order, deduplicated."""
    seen: List[str] = []
    for path in SCRIPT_ASSET_PATTERN.findall(html or ""):
        if path not in seen:
            seen.append(path)
    return seen


class CachedCredential:
    """
    A credential captured outside the gateway (VQD_TOKEN / VQD_HASH).
    Immutable; considered fresh for ``max_age`` seconds after ``issued_at``.
    """

    def __init__(self, credential: UpstreamCredential, issued_at: float, max_age: float):
        self.credential = credential
        self.issued_at = issued_at
        self.max_age = max_age

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["CachedCredential"]:
        if not settings.VQD_TOKEN:
            return None
        return cls(
            UpstreamCredential(token=settings.VQD_TOKEN, aux_hash=settings.VQD_HASH or None, source="cached"),
            issued_at=settings.loaded_at,
            max_age=settings.VQD_TOKEN_MAX_AGE,
        )

    def is_fresh(self, now: Optional[float] = None) -> bool:
        if self.max_age <= 0:
            return True
        now = time.time() if now is None else now
        return now - self.issued_at < self.max_age


class TokenProvider:
    """Walks the token strategies for one inbound request."""

    def __init__(self, client: DuckChatClient, cached: Optional[CachedCredential] = None):
        self.client = client
        self.cached = cached

    async def acquire(self, attempt: int = 0) -> UpstreamCredential:
        """
        Return a credential for the given attempt number.

        The cached credential is only a fast path for the first attempt; once
        an attempt failed the token is scraped live.
        """
        if attempt == 0 and self.cached is not None:
            if self.cached.is_fresh():
                logger.debug("Using cached vqd credential")
                return self.cached.credential
            logger.info("Cached vqd credential expired, scraping a fresh one")

        token = await self.scrape_token()
        return UpstreamCredential(token=token)

    async def scrape_token(self) -> str:
        html = await self._fetch_body("/")
        if html is not None:
            # Method 1: token embedded in the landing page
            token = extract_from_html(html)
            if token:
                logger.info("Extracted vqd token from landing page")
                return token

            # Method 2: token inside the script bundles the page links to
            for path in find_script_assets(html):
                body = await self._fetch_body(path)
                token = extract_from_asset(body) if body is not None else None
                if token:
                    logger.info(f"Extracted vqd token from script asset {path}")
                    return token

        # Method 3: well-known asset paths
        for path in FALLBACK_ASSET_PATHS:
            body = await self._fetch_body(path)
            token = extract_from_fallback_asset(body) if body is not None else None
            if token:
                logger.info(f"Extracted vqd token from fallback asset {path}")
                return token

        # Last resort: status endpoint returns the token as a header
        logger.info("Trying duckchat status endpoint as last resort")
        try:
            resp = await self.client.probe_status()
        except UpstreamError as e:
            raise TokenUnavailable(f"Could not obtain vqd token: status request failed: {e.message}")
        token = resp.headers.get(TOKEN_HEADER)
        if token:
            logger.info("Extracted vqd token from status response header")
            return token

        raise TokenUnavailable("Could not obtain vqd token using any method")

    async def _fetch_body(self, path: str) -> Optional[str]:
        try:
            resp = await self.client.fetch(path)
        except UpstreamError as e:
            logger.warning(f"Token source {path} unreachable: {e.message}")
            return None
        if not resp.is_success:
            logger.debug("Token source %s returned status %s", path, resp.status_code)
            return None
        return resp.text
