"""
Challenge Policy Engine

Pure business logic for challenge decisions.
This module is STATELESS and DETERMINISTIC.

No I/O. No randomness. Just threshold bands.
"""

import logging
from typing import Optional, Tuple

from core.config import DEFAULT_HARD_THRESHOLD, DEFAULT_SOFT_THRESHOLD
from core.schemas.outputs import AbuseRating, FingerprintAnalysis, Severity


logger = logging.getLogger(__name__)


# Signals that mark the user-agent itself as a non-human client
USER_AGENT_BOT_SIGNALS = (
    "empty_user_agent",
    "automation_user_agent",
    "bot_user_agent",
    "scripted_client_user_agent",
    "headless_client_hints",
)


class ChallengePolicyEngine:
    """
    Maps a 0-100 risk score onto severity and a challenge decision.

    Severity bands:
        HIGH:   score >= hard_threshold
        MEDIUM: score >= soft_threshold
        LOW:    score > 0
        NONE:   otherwise

    Challenge:
        score >= soft_threshold
    """

    ABUSER_THRESHOLD: int = 70
    SUSPECT_THRESHOLD: int = 50

    def __init__(
        self,
        hard_threshold: int = DEFAULT_HARD_THRESHOLD,
        soft_threshold: int = DEFAULT_SOFT_THRESHOLD,
    ) -> None:
        if not self.thresholds_valid(hard_threshold, soft_threshold):
            raise ValueError(
                f"Invalid thresholds: soft={soft_threshold}, hard={hard_threshold} "
                f"(need 0 <= soft <= hard <= 100)"
            )
        self.hard_threshold = hard_threshold
        self.soft_threshold = soft_threshold

    @staticmethod
    def thresholds_valid(hard_threshold: int, soft_threshold: int) -> bool:
        return 0 <= soft_threshold <= hard_threshold <= 100

    def resolve_thresholds(
        self,
        hard_threshold: Optional[int],
        soft_threshold: Optional[int],
    ) -> Tuple[int, int]:
        """
        Per-call threshold override.

        Missing values use the engine defaults; an invalid pair falls back
        to the defaults entirely.
        """
        hard = self.hard_threshold if hard_threshold is None else hard_threshold
        soft = self.soft_threshold if soft_threshold is None else soft_threshold
        if not self.thresholds_valid(hard, soft):
            logger.warning(
                f"Ignoring invalid thresholds soft={soft} hard={hard}, "
                f"using soft={self.soft_threshold} hard={self.hard_threshold}"
            )
            return self.hard_threshold, self.soft_threshold
        return hard, soft

    def severity(
        self,
        score: int,
        hard_threshold: Optional[int] = None,
        soft_threshold: Optional[int] = None,
    ) -> Severity:
        hard, soft = self.resolve_thresholds(hard_threshold, soft_threshold)
        if score >= hard:
            return Severity.HIGH
        if score >= soft:
            return Severity.MEDIUM
        if score > 0:
            return Severity.LOW
        return Severity.NONE

    def is_challenged(
        self,
        score: int,
        hard_threshold: Optional[int] = None,
        soft_threshold: Optional[int] = None,
    ) -> bool:
        _, soft = self.resolve_thresholds(hard_threshold, soft_threshold)
        return score >= soft

    def rate_abuse_risk(self, analysis: FingerprintAnalysis) -> AbuseRating:
        """
        Abuse confidence for reporting.

        >= 70 is always an abuser; >= 50 only when the user-agent itself was
        flagged; anything lower is clean.
        """
        if analysis.score >= self.ABUSER_THRESHOLD:
            return AbuseRating(
                is_abuser=True,
                confidence=analysis.score / 100,
                pattern="; ".join(analysis.reasons),
            )

        if analysis.score >= self.SUSPECT_THRESHOLD:
            ua_flagged = any(r in USER_AGENT_BOT_SIGNALS for r in analysis.reasons)
            return AbuseRating(
                is_abuser=ua_flagged,
                confidence=analysis.score / 100,
                pattern="; ".join(analysis.reasons),
            )

        return AbuseRating(is_abuser=False, confidence=0.0, pattern="Clean")
