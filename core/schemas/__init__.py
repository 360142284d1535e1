"""
Challenge Core Schemas

Public exports for input and output Pydantic models.
"""

# Input schemas
from core.schemas.inputs import (
    ChallengeRequestPayload,
    RequestHeaders,
    ResourceLoadedPayload,
    ResourcePaths,
    ResourceType,
    SessionDetailPayload,
    SolutionPayload,
    VerifyResourcesPayload,
)

# Output schemas
from core.schemas.outputs import (
    ChallengePayload,
    ChallengeStats,
    DispatchResult,
    FingerprintAnalysis,
    ResourceVerification,
    SessionSnapshot,
    SessionStatus,
    Severity,
    SeverityBreakdown,
    SolutionResult,
)

__all__ = [
    # Input
    "ResourceType",
    "RequestHeaders",
    "ResourcePaths",
    "ChallengeRequestPayload",
    "ResourceLoadedPayload",
    "VerifyResourcesPayload",
    "SolutionPayload",
    "SessionDetailPayload",
    # Output
    "Severity",
    "SessionStatus",
    "FingerprintAnalysis",
    "ChallengePayload",
    "DispatchResult",
    "ResourceVerification",
    "SolutionResult",
    "SeverityBreakdown",
    "ChallengeStats",
    "SessionSnapshot",
]
