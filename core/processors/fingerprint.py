"""
Challenge Fingerprint Analyzer

Turns a request header snapshot and user-agent into a bot-likelihood score.
No decisions. No I/O. Pure signal derivation.

Signals are additive: each triggered signal adds its weight from the weight
table and the total is clamped to [0, 100]. The table is policy, not
contract; pass a different one to the analyzer to tune it.
"""

import logging
import re
from typing import Dict, List, Mapping, Optional, Tuple, Union

from user_agents import parse as parse_user_agent

from core.schemas.inputs import RequestHeaders
from core.schemas.outputs import FingerprintAnalysis


logger = logging.getLogger(__name__)


# =============================================================================
# Signal Weights
# =============================================================================

SIGNAL_WEIGHTS: Dict[str, int] = {
    # User-agent
    "empty_user_agent": 60,
    "automation_user_agent": 70,
    "bot_user_agent": 70,
    "allowlisted_crawler": 0,
    "scripted_client_user_agent": 60,
    "oversized_user_agent": 15,
    "user_agent_mismatch": 15,
    # Content negotiation
    "missing_accept": 5,
    "missing_accept_language": 15,
    "missing_accept_encoding": 15,
    "unusual_accept_encoding": 10,
    # Client hints
    "missing_client_hints": 15,
    "unexpected_client_hints": 15,
    "client_hints_mismatch": 15,
    "client_hints_platform_mismatch": 10,
    "headless_client_hints": 60,
    # Proxy / relay
    "proxy_via_header": 10,
    "forwarded_chain": 10,
    "proxy_authorization_header": 10,
    "cdn_edge": 0,
    # Fetch metadata
    "missing_fetch_metadata": 10,
}

SIGNAL_DESCRIPTIONS: Dict[str, str] = {
    "empty_user_agent": "Empty user agent",
    "automation_user_agent": "Automation framework in user agent",
    "bot_user_agent": "Bot or crawler user agent",
    "allowlisted_crawler": "Known search engine crawler",
    "scripted_client_user_agent": "Scripted HTTP client user agent",
    "oversized_user_agent": "Unusually long user agent string",
    "user_agent_mismatch": "User agent mismatch between sources",
    "missing_accept": "Missing accept header",
    "missing_accept_language": "Missing accept-language header",
    "missing_accept_encoding": "Missing accept-encoding header",
    "unusual_accept_encoding": "Accept-encoding without gzip, br or deflate",
    "missing_client_hints": "Chromium browser without sec-ch-ua client hints",
    "unexpected_client_hints": "Client hints sent by a browser that does not support them",
    "client_hints_mismatch": "Client hint brands do not match the user agent",
    "client_hints_platform_mismatch": "Client hint platform does not match the user agent",
    "headless_client_hints": "Headless browser brand in client hints",
    "proxy_via_header": "Proxy via header present",
    "forwarded_chain": "Long x-forwarded-for chain",
    "proxy_authorization_header": "Proxy authorization header present",
    "cdn_edge": "CDN edge headers present",
    "missing_fetch_metadata": "Browser request without sec-fetch metadata",
}

PROXY_SIGNALS = ("proxy_via_header", "forwarded_chain", "proxy_authorization_header")

# Proxy signals together never add more than this.
PROXY_SIGNAL_CAP = 20

MAX_USER_AGENT_LENGTH = 500
FORWARDED_CHAIN_HOPS = 3
CLIENT_HINTS_MIN_VERSION = 89


# =============================================================================
# User-Agent Patterns
# =============================================================================

AUTOMATION_PATTERN = re.compile(
    r"headless|puppeteer|playwright|selenium|webdriver|phantomjs|nightmare|cypress|zombie",
    re.IGNORECASE,
)

# Standalone tokens or product names ending in one ("AhrefsBot/7.0"); device
# models such as "CUBOT_X30" do not match
BOT_TOKEN_PATTERN = re.compile(
    r"(?<![a-z])(?:bot|crawler|spider|scraper|scrapy|slurp)\b|[a-z]+(?:bot|crawler|spider)/",
    re.IGNORECASE,
)

ALLOWED_CRAWLER_PATTERN = re.compile(
    r"googlebot|bingbot|duckduckbot|applebot|yandexbot|baiduspider|yahoo! slurp|"
    r"facebookexternalhit|twitterbot|linkedinbot",
    re.IGNORECASE,
)

SCRIPTED_CLIENT_PATTERN = re.compile(
    r"curl/|wget/|python|httpx|aiohttp|go-http-client|java/|okhttp|axios|node-fetch|"
    r"libwww-perl|ruby|php/|httpie|postmanruntime|insomnia|powershell",
    re.IGNORECASE,
)

# user-agents browser families that implement User-Agent Client Hints
CLIENT_HINT_FAMILIES = {"Chrome", "Chrome Mobile", "Chromium", "Edge", "Edge Mobile"}

# Families that never send sec-ch-ua
NO_CLIENT_HINT_MARKERS = ("Firefox", "Safari", "iOS")

FAMILY_BRANDS: Dict[str, Tuple[str, ...]] = {
    "Chrome": ("google chrome", "chromium"),
    "Chrome Mobile": ("google chrome", "chromium"),
    "Chromium": ("chromium",),
    "Edge": ("microsoft edge", "chromium"),
    "Edge Mobile": ("microsoft edge", "chromium"),
}

OS_PLATFORMS: Dict[str, str] = {
    "Windows": "windows",
    "Mac OS X": "macos",
    "Android": "android",
    "Chrome OS": "chrome os",
    "iOS": "ios",
    "Linux": "linux",
    "Ubuntu": "linux",
    "Fedora": "linux",
}

ACCEPTED_ENCODINGS = ("gzip", "br", "deflate", "zstd")


HeaderInput = Union[RequestHeaders, Mapping[str, Optional[str]], None]


# =============================================================================
# Analyzer
# =============================================================================

class FingerprintAnalyzer:
    """
    Scores request headers and user-agent for automation likelihood.

    Checks run in a fixed order and every triggered signal is reported in
    `reasons`, so the result doubles as an audit trail:
    1. User-agent content (empty, automation, bot, scripted client, length)
    2. Content negotiation headers (accept, accept-language, accept-encoding)
    3. Client hints against the declared browser family
    4. Proxy / relay headers (capped)
    5. Fetch metadata on browser-like requests
    """

    def __init__(
        self,
        weights: Optional[Dict[str, int]] = None,
        proxy_cap: int = PROXY_SIGNAL_CAP,
    ) -> None:
        self.weights = dict(SIGNAL_WEIGHTS)
        if weights:
            self.weights.update(weights)
        self.proxy_cap = proxy_cap

    def analyze(self, headers: HeaderInput, user_agent: Optional[str]) -> FingerprintAnalysis:
        """
        Score one request.

        Args:
            headers: Header snapshot or any header mapping
            user_agent: Raw user-agent string; falls back to the user-agent
                header when empty

        Returns:
            FingerprintAnalysis with the clamped score, triggered signal names
            in check order, and each signal's contribution.
        """
        snapshot = RequestHeaders.from_mapping(headers)
        ua = (user_agent or "").strip() or (snapshot.get("user-agent") or "").strip()

        signals: List[str] = []
        signals.extend(self._check_user_agent(ua, snapshot))
        signals.extend(self._check_content_negotiation(snapshot))
        signals.extend(self._check_client_hints(ua, snapshot))
        signals.extend(self._check_proxy(snapshot))
        signals.extend(self._check_fetch_metadata(ua, snapshot, signals))

        contributions: Dict[str, int] = {}
        proxy_total = 0
        for name in signals:
            weight = self.weights.get(name, 0)
            if name in PROXY_SIGNALS:
                weight = max(0, min(weight, self.proxy_cap - proxy_total))
                proxy_total += weight
            contributions[name] = weight

        score = sum(contributions.values())
        score = min(max(score, 0), 100)

        return FingerprintAnalysis(
            score=score,
            reasons=signals,
            contributions=contributions,
        )

    def describe(self, signal: str) -> str:
        """Human-readable text for a signal name."""
        return SIGNAL_DESCRIPTIONS.get(signal, signal.replace("_", " "))

    # -------------------------------------------------------------------------
    # User-Agent
    # -------------------------------------------------------------------------

    def _check_user_agent(self, ua: str, headers: RequestHeaders) -> List[str]:
        if not ua:
            return ["empty_user_agent"]

        signals: List[str] = []

        if AUTOMATION_PATTERN.search(ua):
            signals.append("automation_user_agent")

        if ALLOWED_CRAWLER_PATTERN.search(ua):
            signals.append("allowlisted_crawler")
        elif BOT_TOKEN_PATTERN.search(ua):
            signals.append("bot_user_agent")

        if SCRIPTED_CLIENT_PATTERN.search(ua):
            signals.append("scripted_client_user_agent")

        if len(ua) > MAX_USER_AGENT_LENGTH:
            signals.append("oversized_user_agent")

        header_ua = headers.get("user-agent")
        if header_ua is not None and header_ua.strip() != ua:
            signals.append("user_agent_mismatch")

        return signals

    # -------------------------------------------------------------------------
    # Content Negotiation
    # -------------------------------------------------------------------------

    def _check_content_negotiation(self, headers: RequestHeaders) -> List[str]:
        signals: List[str] = []

        if not headers.has("accept"):
            signals.append("missing_accept")

        if not headers.has("accept-language"):
            signals.append("missing_accept_language")

        encoding = headers.get("accept-encoding")
        if encoding is None:
            signals.append("missing_accept_encoding")
        elif not any(token in encoding.lower() for token in ACCEPTED_ENCODINGS):
            signals.append("unusual_accept_encoding")

        return signals

    # -------------------------------------------------------------------------
    # Client Hints
    # -------------------------------------------------------------------------

    def _check_client_hints(self, ua: str, headers: RequestHeaders) -> List[str]:
        brands = headers.get("sec-ch-ua")

        if brands is not None and "headless" in brands.lower():
            return ["headless_client_hints"]

        if not ua:
            return []

        parsed = parse_user_agent(ua)
        family = parsed.browser.family
        signals: List[str] = []

        if family in CLIENT_HINT_FAMILIES:
            major = self._major_version(parsed.browser.version)
            if brands is None:
                if major >= CLIENT_HINTS_MIN_VERSION:
                    signals.append("missing_client_hints")
                return signals

            if not any(brand in brands.lower() for brand in FAMILY_BRANDS.get(family, ())):
                signals.append("client_hints_mismatch")

            platform = headers.get("sec-ch-ua-platform")
            expected = OS_PLATFORMS.get(parsed.os.family)
            if platform is not None and expected is not None:
                if platform.strip().strip('"').lower() != expected:
                    signals.append("client_hints_platform_mismatch")

        elif brands is not None and any(marker in family for marker in NO_CLIENT_HINT_MARKERS):
            signals.append("unexpected_client_hints")

        return signals

    def _major_version(self, version: Tuple) -> int:
        if not version:
            return 0
        try:
            return int(version[0])
        except (TypeError, ValueError):
            return 0

    # -------------------------------------------------------------------------
    # Proxy / Relay
    # -------------------------------------------------------------------------

    def _check_proxy(self, headers: RequestHeaders) -> List[str]:
        signals: List[str] = []

        if headers.has("via") or headers.has("x-via"):
            signals.append("proxy_via_header")

        forwarded = headers.get("x-forwarded-for")
        if forwarded is not None:
            hops = [hop for hop in forwarded.split(",") if hop.strip()]
            if len(hops) >= FORWARDED_CHAIN_HOPS:
                signals.append("forwarded_chain")

        if headers.has("x-proxy-authorization"):
            signals.append("proxy_authorization_header")

        # Legitimate, recorded for audit only
        if headers.has("cf-ray") or headers.has("cf-connecting-ip"):
            signals.append("cdn_edge")

        return signals

    # -------------------------------------------------------------------------
    # Fetch Metadata
    # -------------------------------------------------------------------------

    def _check_fetch_metadata(
        self,
        ua: str,
        headers: RequestHeaders,
        signals_so_far: List[str],
    ) -> List[str]:
        """Browser-like requests should carry at least one sec-fetch-* header."""
        if not ua.startswith("Mozilla/"):
            return []

        # Already scored as a non-browser client
        if any(s in signals_so_far for s in ("automation_user_agent", "bot_user_agent", "scripted_client_user_agent")):
            return []

        if any(headers.has(h) for h in ("sec-fetch-site", "sec-fetch-mode", "sec-fetch-dest")):
            return []

        return ["missing_fetch_metadata"]
