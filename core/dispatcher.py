"""
Challenge Dispatcher

Decides whether a request gets a challenge.

Pipeline:
    Session reuse → Fingerprint analysis → Threshold policy → Session creation

A live session passed back by the client is reused as-is and never
re-scored, so repeated dispatches within one session are idempotent.

Every path returns a structurally valid DispatchResult. Analyzer or store
failures are logged and degrade to pass-through, unless the dispatcher is
configured to fail closed.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from core.clock import Clock, SystemClock
from core.config import ChallengeSettings
from core.models.policy import ChallengePolicyEngine
from core.processors.fingerprint import FingerprintAnalyzer, HeaderInput
from core.schemas.inputs import RequestHeaders, ResourcePaths
from core.schemas.outputs import (
    ChallengePayload,
    DispatchResult,
    FingerprintAnalysis,
    Severity,
)
from persistence.session_store import ChallengeSession, SessionStore, new_session_id


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

LOW_RISK_REASON = "low risk"
DEGRADED_REASON = "risk assessment unavailable"
VERIFIED_REASON = "session already verified"

# How many top signals make up the human-readable reason
REASON_SIGNAL_COUNT = 2


PuzzleFactory = Callable[[], Dict[str, Any]]


def new_challenge_id() -> str:
    return f"challenge_{uuid.uuid4().hex[:16]}"


# =============================================================================
# Dispatcher
# =============================================================================

class ChallengeDispatcher:
    """
    Runs the fingerprint analyzer, applies the threshold policy and keeps
    the session store in step with the decision.
    """

    def __init__(
        self,
        store: SessionStore,
        analyzer: Optional[FingerprintAnalyzer] = None,
        policy: Optional[ChallengePolicyEngine] = None,
        settings: Optional[ChallengeSettings] = None,
        puzzle_factory: Optional[PuzzleFactory] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.settings = settings or ChallengeSettings()
        self.analyzer = analyzer or FingerprintAnalyzer()
        self.policy = policy or ChallengePolicyEngine(
            hard_threshold=self.settings.hard_threshold,
            soft_threshold=self.settings.soft_threshold,
        )
        self.puzzle_factory = puzzle_factory
        self.clock = clock or store.clock or SystemClock()

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch(
        self,
        headers: HeaderInput,
        user_agent: Optional[str],
        hard_threshold: Optional[int] = None,
        soft_threshold: Optional[int] = None,
        existing_session_id: Optional[str] = None,
    ) -> DispatchResult:
        """
        Produce the challenge decision for one request.

        Args:
            headers: Header snapshot or any header mapping
            user_agent: Raw user-agent string
            hard_threshold: Score at which severity is "high" (default from settings)
            soft_threshold: Score at which a challenge is issued (default from settings)
            existing_session_id: Session id presented by the client, if any

        Returns:
            DispatchResult. Never raises.
        """
        snapshot = RequestHeaders.from_mapping(headers)

        if existing_session_id:
            reused = self._lookup(existing_session_id)
            if reused is not None:
                return self._reuse(reused)

        try:
            analysis = self.analyzer.analyze(snapshot, user_agent)
        except Exception as e:
            logger.error(f"Fingerprint analysis failed: {e} (headers={snapshot.redacted()})")
            return self._degraded(Severity.NONE, 0)

        hard, soft = self.policy.resolve_thresholds(hard_threshold, soft_threshold)
        severity = self.policy.severity(analysis.score, hard, soft)
        challenged = self.policy.is_challenged(analysis.score, hard, soft)
        required = self._required_resources() if challenged else None

        try:
            session = self.store.create(
                user_agent=user_agent or "",
                risk_score=analysis.score,
                severity=severity,
                is_challenged=challenged,
                ttl_seconds=self.settings.session_ttl_seconds,
                required_resources=required,
            )
        except Exception as e:
            logger.error(
                f"Session store unavailable during dispatch: {e} "
                f"(score={analysis.score}, severity={severity.value}, headers={snapshot.redacted()})"
            )
            return self._degraded(severity, analysis.score)

        if not challenged:
            logger.debug(f"Pass-through: session={session.id} score={analysis.score}")
            return DispatchResult(
                should_challenge=False,
                session_id=session.id,
                severity=severity,
                risk_score=analysis.score,
                reason=LOW_RISK_REASON,
            )

        reason = self._reason(analysis)
        rating = self.policy.rate_abuse_risk(analysis)
        logger.info(
            f"Challenge issued: session={session.id} score={analysis.score} "
            f"severity={severity.value} abuser={rating.is_abuser} "
            f"confidence={rating.confidence:.2f} signals={analysis.reasons}"
        )
        return DispatchResult(
            should_challenge=True,
            session_id=session.id,
            severity=severity,
            risk_score=analysis.score,
            reason=reason,
            payload=self._payload(session.required_resources),
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _lookup(self, session_id: str) -> Optional[ChallengeSession]:
        try:
            return self.store.get(session_id)
        except Exception as e:
            logger.warning(f"Session lookup failed for {session_id}, scoring afresh: {e}")
            return None

    def _reuse(self, session: ChallengeSession) -> DispatchResult:
        """Decision for a live session; its score and severity are reused."""
        if session.verified:
            return DispatchResult(
                should_challenge=False,
                session_id=session.id,
                severity=session.severity,
                risk_score=session.risk_score,
                reason=VERIFIED_REASON,
            )

        if not session.is_challenged:
            return DispatchResult(
                should_challenge=False,
                session_id=session.id,
                severity=session.severity,
                risk_score=session.risk_score,
                reason=LOW_RISK_REASON,
            )

        return DispatchResult(
            should_challenge=True,
            session_id=session.id,
            severity=session.severity,
            risk_score=session.risk_score,
            reason=f"Risk score {session.risk_score} requires verification",
            payload=self._payload(session.required_resources or self._required_resources()),
        )

    def _degraded(self, severity: Severity, score: int) -> DispatchResult:
        """Result used when scoring or storage failed."""
        challenge = self.settings.fail_closed
        if challenge:
            logger.warning("Failing closed: challenging request without a stored session")
        else:
            logger.warning("Failing open: passing request through without a stored session")

        return DispatchResult(
            should_challenge=challenge,
            session_id=new_session_id(),
            severity=severity,
            risk_score=score,
            reason=DEGRADED_REASON,
            payload=self._payload(self._required_resources()) if challenge else None,
        )

    def _reason(self, analysis: FingerprintAnalysis) -> str:
        """Top contributing signals, highest weight first (ties keep check order)."""
        ranked: List[str] = [
            name for name, weight in sorted(
                analysis.contributions.items(),
                key=lambda item: item[1],
                reverse=True,
            )
            if weight > 0
        ]
        if not ranked:
            return f"Risk score {analysis.score} at or above challenge threshold"
        return "; ".join(self.analyzer.describe(name) for name in ranked[:REASON_SIGNAL_COUNT])

    def _required_resources(self) -> ResourcePaths:
        return ResourcePaths(js=self.settings.resource_js, css=self.settings.resource_css)

    def _payload(self, required: Optional[ResourcePaths]) -> ChallengePayload:
        puzzle: Dict[str, Any] = {}
        if self.puzzle_factory is not None:
            try:
                puzzle = dict(self.puzzle_factory())
            except Exception as e:
                logger.error(f"Puzzle factory failed, issuing challenge without puzzle: {e}")

        return ChallengePayload(
            challenge_id=new_challenge_id(),
            issued_at=self.clock.now_ms(),
            required_resources=required or self._required_resources(),
            puzzle=puzzle,
        )
