"""
Redis Challenge Session Store

Same contract as InMemorySessionStore, backed by Redis so sessions survive
API restarts and are shared between workers.

Key Schema:
    CHALLENGE_SESSION:{session_id}  → Session JSON (PX TTL = remaining lifetime)

Creation uses SET NX so an id collision is rejected instead of overwritten.
Updates and sweeps use WATCH/MULTI/EXEC with retry on conflict, so a sweep
never deletes a session another worker is updating.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, List, Optional

import redis
from redis.exceptions import RedisError, WatchError

from core.clock import Clock
from core.errors import InternalError, StoreUnavailableError
from core.schemas.inputs import ResourcePaths
from core.schemas.outputs import Severity
from persistence.session_store import (
    ChallengeSession,
    SessionMutation,
    SessionStore,
    check_mutation,
    new_session_id,
)


logger = logging.getLogger(__name__)


class RedisSessionStore(SessionStore):
    """Challenge sessions stored as JSON strings with a matching key TTL."""

    KEY_PREFIX: str = "CHALLENGE_SESSION:"
    MAX_RETRIES: int = 5
    SCAN_COUNT: int = 500

    def __init__(
        self,
        client: redis.Redis,
        clock: Optional[Clock] = None,
        id_factory: Callable[[], str] = new_session_id,
    ) -> None:
        super().__init__(clock=clock, id_factory=id_factory)
        self.client = client

    # -------------------------------------------------------------------------
    # Key Builders
    # -------------------------------------------------------------------------

    def _session_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def _ttl_ms(self, session: ChallengeSession) -> int:
        # Redis rejects non-positive expiry; logical expiry is still checked on read
        return max(1, int(session.expires_at - self.clock.now_ms()))

    def _decode(self, raw: Optional[str]) -> Optional[ChallengeSession]:
        if raw is None:
            return None
        try:
            return ChallengeSession.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Discarding unreadable challenge session payload: {e}")
            return None

    # -------------------------------------------------------------------------
    # Session Operations
    # -------------------------------------------------------------------------

    def create(
        self,
        user_agent: str,
        risk_score: int,
        severity: Severity,
        is_challenged: bool,
        ttl_seconds: float,
        required_resources: Optional[ResourcePaths] = None,
    ) -> ChallengeSession:
        for attempt in range(self.MAX_ID_ATTEMPTS):
            session = self._build_session(
                self.id_factory(), user_agent, risk_score, severity,
                is_challenged, ttl_seconds, required_resources,
            )
            try:
                created = self.client.set(
                    self._session_key(session.id),
                    json.dumps(session.to_dict()),
                    px=self._ttl_ms(session),
                    nx=True,
                )
            except RedisError as e:
                logger.error(f"Failed to create challenge session: {e}")
                raise StoreUnavailableError(str(e)) from e

            if created:
                return session
            logger.warning(f"Session id collision on {session.id}, attempt {attempt + 1}")

        raise InternalError(f"Could not allocate a unique session id after {self.MAX_ID_ATTEMPTS} attempts")

    def get(self, session_id: str) -> Optional[ChallengeSession]:
        try:
            session = self._decode(self.client.get(self._session_key(session_id)))
        except RedisError as e:
            logger.error(f"Failed to get challenge session {session_id}: {e}")
            raise StoreUnavailableError(str(e)) from e

        if session is None or session.is_expired(self.clock.now_ms()):
            return None
        return session

    def update(self, session_id: str, mutation: SessionMutation) -> Optional[ChallengeSession]:
        key = self._session_key(session_id)

        for attempt in range(self.MAX_RETRIES):
            try:
                with self.client.pipeline() as pipe:
                    pipe.watch(key)

                    current = self._decode(pipe.get(key))
                    if current is None or current.is_expired(self.clock.now_ms()):
                        return None

                    working = ChallengeSession.from_dict(current.to_dict())
                    mutation(working)
                    check_mutation(current, working)

                    pipe.multi()
                    pipe.set(key, json.dumps(working.to_dict()), px=self._ttl_ms(working))
                    pipe.execute()
                    return working

            except WatchError:
                logger.debug(f"Watch conflict on challenge session update, attempt {attempt + 1}")
                continue
            except RedisError as e:
                logger.error(f"Redis error on challenge session update {session_id}: {e}")
                raise StoreUnavailableError(str(e)) from e

        logger.warning(f"Max retries exceeded for challenge session update {session_id}")
        raise InternalError(f"Update contention on {session_id}")

    def delete(self, session_id: str) -> bool:
        try:
            return self.client.delete(self._session_key(session_id)) > 0
        except RedisError as e:
            logger.error(f"Failed to delete challenge session {session_id}: {e}")
            raise StoreUnavailableError(str(e)) from e

    def sweep_expired(self) -> int:
        removed = 0
        try:
            for key in self.client.scan_iter(match=f"{self.KEY_PREFIX}*", count=self.SCAN_COUNT):
                if self._delete_if_expired(key):
                    removed += 1
        except RedisError as e:
            logger.error(f"Challenge session sweep aborted: {e}")
            raise StoreUnavailableError(str(e)) from e

        if removed:
            logger.debug(f"Swept {removed} expired challenge sessions")
        return removed

    def live_sessions(self) -> List[ChallengeSession]:
        now = self.clock.now_ms()
        sessions: List[ChallengeSession] = []
        try:
            for key in self.client.scan_iter(match=f"{self.KEY_PREFIX}*", count=self.SCAN_COUNT):
                session = self._decode(self.client.get(key))
                if session is not None and not session.is_expired(now):
                    sessions.append(session)
        except RedisError as e:
            logger.error(f"Failed to scan challenge sessions: {e}")
            raise StoreUnavailableError(str(e)) from e
        return sessions

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _delete_if_expired(self, key: str) -> bool:
        """Delete one key if expired; skip it if another client touches it meanwhile."""
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(key)
                session = self._decode(pipe.get(key))
                if session is not None and session.expires_at > self.clock.now_ms():
                    return False
                pipe.multi()
                pipe.delete(key)
                pipe.execute()
                return session is not None
            except WatchError:
                return False
