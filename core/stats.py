"""
Challenge Stats & Introspection

Read-only views over the session store for dashboards and debugging.
Only live sessions are counted.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from core.clock import Clock
from core.schemas.outputs import ChallengeStats, LoadedResources, SessionSnapshot
from persistence.session_store import SessionStore


logger = logging.getLogger(__name__)


def _to_datetime(epoch_ms: float) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc)


class ChallengeStatsService:
    def __init__(self, store: SessionStore, clock: Optional[Clock] = None) -> None:
        self.store = store
        self.clock = clock or store.clock

    def get_challenge_stats(self) -> ChallengeStats:
        return self.store.stats()

    def get_session_detail(self, session_id: str) -> Optional[SessionSnapshot]:
        """Full snapshot of one live session, or None when absent/expired."""
        session = self.store.get(session_id)
        if session is None:
            return None

        return SessionSnapshot(
            session_id=session.id,
            created_at=_to_datetime(session.created_at),
            expires_at=_to_datetime(session.expires_at),
            user_agent=session.user_agent,
            risk_score=session.risk_score,
            severity=session.severity,
            status=session.status(self.clock.now_ms()),
            is_challenged=session.is_challenged,
            verified=session.verified,
            resources_loaded=LoadedResources(
                js=sorted(session.resources.js_loaded),
                css=sorted(session.resources.css_loaded),
            ),
            required_resources=session.required_resources,
        )
