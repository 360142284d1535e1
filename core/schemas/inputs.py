"""
Challenge Core Input Schemas

Pydantic V2 models for:
- The request header snapshot fed to the fingerprint analyzer
- Challenge request, resource-loaded report, resource verification,
  solution submission and session detail payloads
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.schemas.base import CamelModel


# =============================================================================
# Enums
# =============================================================================

class ResourceType(str, Enum):
    """Kind of challenge resource a client reports as loaded."""
    JS = "js"
    CSS = "css"


# =============================================================================
# Header Snapshot
# =============================================================================

HEADER_NAMES = (
    "user-agent",
    "accept",
    "accept-language",
    "accept-encoding",
    "sec-ch-ua",
    "sec-ch-ua-mobile",
    "sec-ch-ua-platform",
    "sec-fetch-site",
    "sec-fetch-mode",
    "sec-fetch-dest",
    "referer",
    "origin",
    "x-forwarded-for",
    "x-forwarded-host",
    "x-real-ip",
    "x-proxy-authorization",
    "via",
    "x-via",
    "cf-ray",
    "cf-connecting-ip",
)

# Header values that identify the client; never written to logs.
SENSITIVE_HEADERS = {"x-forwarded-for", "x-real-ip", "cf-connecting-ip", "x-proxy-authorization"}


def _field_name(header: str) -> str:
    return header.lower().replace("-", "_")


class RequestHeaders(BaseModel):
    """
    Snapshot of the request headers the fingerprint analyzer knows about.

    Every field is optional; an empty string is treated the same as a
    missing header. Build one from any header mapping with `from_mapping`.
    """
    model_config = ConfigDict(frozen=True)

    user_agent: Optional[str] = None
    accept: Optional[str] = None
    accept_language: Optional[str] = None
    accept_encoding: Optional[str] = None
    sec_ch_ua: Optional[str] = None
    sec_ch_ua_mobile: Optional[str] = None
    sec_ch_ua_platform: Optional[str] = None
    sec_fetch_site: Optional[str] = None
    sec_fetch_mode: Optional[str] = None
    sec_fetch_dest: Optional[str] = None
    referer: Optional[str] = None
    origin: Optional[str] = None
    x_forwarded_for: Optional[str] = None
    x_forwarded_host: Optional[str] = None
    x_real_ip: Optional[str] = None
    x_proxy_authorization: Optional[str] = None
    via: Optional[str] = None
    x_via: Optional[str] = None
    cf_ray: Optional[str] = None
    cf_connecting_ip: Optional[str] = None

    @classmethod
    def from_mapping(cls, headers: Optional[Mapping[str, Optional[str]]]) -> "RequestHeaders":
        """
        Build a snapshot from an arbitrary header mapping.

        Keys are matched case-insensitively and `_`/`-` are interchangeable.
        Unknown headers are dropped.
        """
        if headers is None:
            return cls()
        if isinstance(headers, RequestHeaders):
            return headers

        known = set(cls.model_fields)
        values: Dict[str, str] = {}
        for key, value in headers.items():
            name = _field_name(str(key))
            if name in known and value is not None:
                values[name] = str(value)
        return cls(**values)

    def get(self, header: str) -> Optional[str]:
        """Return the header value, or None when it is missing or blank."""
        value = getattr(self, _field_name(header), None)
        if value is None or value.strip() == "":
            return None
        return value

    def has(self, header: str) -> bool:
        return self.get(header) is not None

    def present(self) -> List[str]:
        """Names of the headers that carry a non-blank value."""
        return [name for name in HEADER_NAMES if self.has(name)]

    def redacted(self) -> Dict[str, Any]:
        """
        Log-safe view: header names with value lengths only.
        Client-identifying values never appear.
        """
        snapshot: Dict[str, Any] = {}
        for name in self.present():
            value = self.get(name) or ""
            if name in SENSITIVE_HEADERS:
                snapshot[name] = "<redacted>"
            else:
                snapshot[name] = f"<{len(value)} chars>"
        return snapshot


# =============================================================================
# Challenge Payloads
# =============================================================================

class ResourcePaths(CamelModel):
    """JS and CSS resource paths a challenged client must fetch."""
    js: str = Field(..., min_length=1, description="JavaScript resource path")
    css: str = Field(..., min_length=1, description="Stylesheet resource path")


class ChallengeRequestPayload(CamelModel):
    """Optional body for the challenge request endpoint."""
    session_id: Optional[str] = Field(
        None,
        description="Existing challenge session id (cookie/correlation id)"
    )


class ResourceLoadedPayload(CamelModel):
    """Report that the client fetched one of the challenge resources."""
    session_id: str = Field(..., min_length=1, description="Challenge session id")
    resource_path: str = Field(..., min_length=1, description="Path of the fetched resource")
    type: ResourceType = Field(..., description="js or css")


class VerifyResourcesPayload(CamelModel):
    """Ask whether the client fetched the expected challenge resources."""
    session_id: str = Field(..., min_length=1, description="Challenge session id")
    expected_resources: Optional[ResourcePaths] = Field(
        None,
        description="Paths to check; defaults to the paths issued with the challenge"
    )


class SolutionPayload(CamelModel):
    """CAPTCHA solution handed to the external oracle."""
    session_id: str = Field(..., min_length=1, description="Challenge session id")
    solution: Dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque solution data understood by the CAPTCHA oracle"
    )
    expected_resources: Optional[ResourcePaths] = Field(
        None,
        description="Resource paths that must have been loaded before solving"
    )


class SessionDetailPayload(CamelModel):
    """Debug lookup of a single challenge session."""
    session_id: str = Field(..., min_length=1, description="Challenge session id")
