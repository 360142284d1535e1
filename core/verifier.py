"""
Resource Load Verifier

Tracks which challenge resources a client actually fetched and gates
CAPTCHA solving on them. A client that never loaded the JS and CSS the
challenge page references is not rendering the page.

Validation errors are raised before the store is touched; unknown or
expired sessions and internal failures come back as False results.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, Union

from core.errors import SessionMutationError, ValidationError
from core.schemas.inputs import ResourcePaths, ResourceType
from core.schemas.outputs import ResourceVerification, SolutionResult
from persistence.session_store import SessionStore


logger = logging.getLogger(__name__)


SESSION_NOT_FOUND = "session not found"
ALL_RESOURCES_LOADED = "All resources loaded"
INTERNAL_FAILURE = "verification unavailable"


class CaptchaOracle(Protocol):
    """External CAPTCHA provider that judges a submitted solution."""

    def verify(self, session_id: str, solution: Dict[str, Any]) -> bool:
        ...


class ResourceLoadVerifier:
    """
    Records resource loads against challenge sessions and answers whether
    the required set was fetched.
    """

    def __init__(self, store: SessionStore, oracle: Optional[CaptchaOracle] = None) -> None:
        self.store = store
        self.oracle = oracle

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_resource_load(
        self,
        session_id: str,
        resource_path: str,
        resource_type: Union[ResourceType, str],
    ) -> bool:
        """
        Record that the client fetched `resource_path`.

        Returns:
            True when recorded; False when the session is unknown, expired,
            or the store failed.

        Raises:
            ValidationError: empty id/path or a type other than js/css.
        """
        if not session_id:
            raise ValidationError("sessionId is required", field="sessionId")
        if not resource_path:
            raise ValidationError("resourcePath is required", field="resourcePath")
        kind = self._resource_type(resource_type)

        try:
            updated = self.store.update(
                session_id,
                lambda session: session.record_resource(kind, resource_path),
            )
        except Exception as e:
            logger.error(f"Failed to record {kind.value} load for {session_id}: {e}")
            return False

        if updated is None:
            logger.debug(f"Resource load for unknown or expired session {session_id}")
            return False
        return True

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify_resource_loads(
        self,
        session_id: str,
        expected: Optional[ResourcePaths] = None,
    ) -> ResourceVerification:
        """
        Check the session's trackers against the expected paths.

        `expected` defaults to the paths issued with the challenge. The
        check is independent of the risk score: a low-risk session still
        has to load the resources to pass.
        """
        if not session_id:
            raise ValidationError("sessionId is required", field="sessionId")

        try:
            session = self.store.get(session_id)
        except Exception as e:
            logger.error(f"Resource verification failed for {session_id}: {e}")
            return ResourceVerification(passed=False, reason=INTERNAL_FAILURE)

        if session is None:
            return ResourceVerification(passed=False, reason=SESSION_NOT_FOUND)

        paths = expected or session.required_resources
        js_ok, css_ok = session.resources_loaded(paths)

        missing = []
        if not js_ok:
            missing.append("JS")
        if not css_ok:
            missing.append("CSS")

        return ResourceVerification(
            passed=not missing,
            reason=f"Missing resources: {', '.join(missing)}" if missing else ALL_RESOURCES_LOADED,
            js_loaded=js_ok,
            css_loaded=css_ok,
            risk_score=session.risk_score,
            is_challenged=session.is_challenged,
        )

    # -------------------------------------------------------------------------
    # Solving
    # -------------------------------------------------------------------------

    def confirm_solution(
        self,
        session_id: str,
        solution: Optional[Dict[str, Any]],
        expected: Optional[ResourcePaths] = None,
    ) -> SolutionResult:
        """
        Accept a CAPTCHA solution.

        The resource gate must pass first; the oracle then judges the
        solution and a correct one marks the session verified.
        """
        if self.oracle is None:
            logger.warning(f"No CAPTCHA oracle configured, cannot verify {session_id}")
            return SolutionResult(accepted=False, reason=INTERNAL_FAILURE)

        gate = self.verify_resource_loads(session_id, expected)
        if not gate.passed:
            return SolutionResult(accepted=False, reason=gate.reason)

        try:
            correct = bool(self.oracle.verify(session_id, solution or {}))
        except Exception as e:
            logger.error(f"CAPTCHA oracle failed for {session_id}: {e}")
            return SolutionResult(accepted=False, reason=INTERNAL_FAILURE)

        if not correct:
            logger.info(f"Incorrect CAPTCHA solution for {session_id}")
            return SolutionResult(accepted=False, reason="incorrect solution")

        try:
            updated = self.store.update(session_id, lambda session: session.mark_verified())
        except SessionMutationError as e:
            logger.error(f"Refused verification update for {session_id}: {e}")
            return SolutionResult(accepted=False, reason=INTERNAL_FAILURE)
        except Exception as e:
            logger.error(f"Failed to mark {session_id} verified: {e}")
            return SolutionResult(accepted=False, reason=INTERNAL_FAILURE)

        if updated is None:
            return SolutionResult(accepted=False, reason=SESSION_NOT_FOUND)

        logger.info(f"Challenge solved: session={session_id}")
        return SolutionResult(accepted=True, reason="solution accepted")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _resource_type(self, value: Union[ResourceType, str]) -> ResourceType:
        if isinstance(value, ResourceType):
            return value
        try:
            return ResourceType(str(value).lower())
        except ValueError:
            raise ValidationError(f"Invalid resource type: {value!r}", field="type")
