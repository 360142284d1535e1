"""
Challenge Core Output Schemas

Pydantic V2 models for analyzer results, dispatch decisions, resource
verification, solution acceptance, statistics and session snapshots.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.schemas.base import CamelModel
from core.schemas.inputs import ResourcePaths


# =============================================================================
# Enums
# =============================================================================

class Severity(str, Enum):
    """Coarse risk bucket derived from the numeric risk score."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SessionStatus(str, Enum):
    """Lifecycle position of a challenge session."""
    CREATED = "created"
    CHALLENGED = "challenged"
    RESOURCES_VERIFIED = "resources_verified"
    VERIFIED = "verified"
    EXPIRED = "expired"


# =============================================================================
# Fingerprint Analysis
# =============================================================================

class FingerprintAnalysis(BaseModel):
    """Bot-likelihood score for one request."""
    score: int = Field(..., ge=0, le=100, description="Risk score from 0 (clean) to 100")
    reasons: List[str] = Field(
        default_factory=list,
        description="Triggered signal names in the order they were checked"
    )
    contributions: Dict[str, int] = Field(
        default_factory=dict,
        description="Weight each triggered signal added to the score"
    )


class AbuseRating(BaseModel):
    """Abuse confidence derived from a fingerprint analysis."""
    is_abuser: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    pattern: str


# =============================================================================
# Dispatch
# =============================================================================

class ChallengePayload(CamelModel):
    """Everything a caller needs to render a challenge page."""
    challenge_id: str = Field(..., description="Identifier of this challenge issuance")
    issued_at: float = Field(..., description="Issue time in epoch milliseconds")
    required_resources: ResourcePaths = Field(..., description="Resources the client must load")
    puzzle: Dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque puzzle parameters produced by the CAPTCHA provider"
    )


class DispatchResult(CamelModel):
    """Challenge/no-challenge decision for one request."""
    should_challenge: bool
    session_id: str
    severity: Severity
    risk_score: int = Field(0, ge=0, le=100)
    reason: str
    payload: Optional[ChallengePayload] = None


# =============================================================================
# Verification
# =============================================================================

class ResourceVerification(CamelModel):
    """Outcome of the resource load gate."""
    passed: bool
    reason: str
    js_loaded: bool = False
    css_loaded: bool = False
    risk_score: Optional[int] = None
    is_challenged: Optional[bool] = None


class SolutionResult(CamelModel):
    """Outcome of submitting a CAPTCHA solution."""
    accepted: bool
    reason: str


# =============================================================================
# Stats & Introspection
# =============================================================================

class SeverityBreakdown(BaseModel):
    """Live session count per severity."""
    none: int = 0
    low: int = 0
    medium: int = 0
    high: int = 0


class ChallengeStats(CamelModel):
    """Aggregate counts over live challenge sessions."""
    total_sessions: int = 0
    challenged_sessions: int = 0
    verified_sessions: int = 0
    average_risk_score: float = 0.0
    by_severity: SeverityBreakdown = Field(default_factory=SeverityBreakdown)


class LoadedResources(BaseModel):
    js: List[str] = Field(default_factory=list)
    css: List[str] = Field(default_factory=list)


class SessionSnapshot(CamelModel):
    """Full debug view of one challenge session."""
    session_id: str
    created_at: datetime
    expires_at: datetime
    user_agent: str
    risk_score: int
    severity: Severity
    status: SessionStatus
    is_challenged: bool
    verified: bool
    resources_loaded: LoadedResources
    required_resources: Optional[ResourcePaths] = None


# =============================================================================
# HTTP Responses
# =============================================================================

class ChallengeRequestResponse(CamelModel):
    """
    Response for the challenge request endpoint.

    When `required` is false only `session_id` is populated.
    """
    required: bool
    session_id: str
    severity: Optional[Severity] = None
    reason: Optional[str] = None
    payload: Optional[ChallengePayload] = None
    resources: Optional[ResourcePaths] = None


class ResourceLoadedResponse(CamelModel):
    success: bool
    message: str


class VerifyResourcesResponse(CamelModel):
    """Resource verification plus the session fields callers need next."""
    passed: bool
    reason: str
    js_loaded: bool
    css_loaded: bool
    risk_score: Optional[int] = None
    is_challenged: Optional[bool] = None
    requires_captcha: Optional[bool] = None
    message: Optional[str] = None


class SolutionResponse(CamelModel):
    success: bool
    reason: str


class StatsResponse(CamelModel):
    status: str = "ok"
    timestamp: datetime
    stats: ChallengeStats
