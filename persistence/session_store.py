"""
Challenge Session Store

Owns every ChallengeSession. Other components only see detached copies
returned by `get`/`update`; all changes go through `update`.

Usage:
    store = InMemorySessionStore()
    session = store.create(ua, risk_score=72, severity=Severity.HIGH,
                           is_challenged=True, ttl_seconds=1800)
    store.update(session.id, lambda s: s.record_resource(ResourceType.JS, "/a.js"))

The in-memory store is non-durable: sessions are lost on process restart.
Use RedisSessionStore when sessions must outlive the API process.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Iterable, List, Optional, Set, Tuple

from core.clock import Clock, SystemClock
from core.errors import InternalError, SessionMutationError, StoreUnavailableError
from core.schemas.inputs import ResourcePaths, ResourceType
from core.schemas.outputs import (
    ChallengeStats,
    SessionStatus,
    Severity,
    SeverityBreakdown,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Data Models
# =============================================================================

@dataclass
class ResourceLoadTracker:
    """Resource paths a client has fetched. Append-only."""
    js_loaded: Set[str] = field(default_factory=set)
    css_loaded: Set[str] = field(default_factory=set)

    def add(self, resource_type: ResourceType, path: str) -> None:
        if resource_type == ResourceType.JS:
            self.js_loaded.add(path)
        else:
            self.css_loaded.add(path)

    def has(self, resource_type: ResourceType, path: str) -> bool:
        if resource_type == ResourceType.JS:
            return path in self.js_loaded
        return path in self.css_loaded

    def covers(self, other: ResourceLoadTracker) -> bool:
        """True if every path in `other` is also tracked here."""
        return other.js_loaded <= self.js_loaded and other.css_loaded <= self.css_loaded

    def to_dict(self) -> Dict[str, List[str]]:
        return {"js_loaded": sorted(self.js_loaded), "css_loaded": sorted(self.css_loaded)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ResourceLoadTracker:
        return cls(
            js_loaded=set(data.get("js_loaded", [])),
            css_loaded=set(data.get("css_loaded", [])),
        )


@dataclass
class ChallengeSession:
    """One client's challenge lifecycle."""

    id: str
    created_at: float
    """Epoch milliseconds."""

    expires_at: float
    """Epoch milliseconds; created_at + ttl."""

    user_agent: str
    risk_score: int
    severity: Severity
    is_challenged: bool
    verified: bool = False
    resources: ResourceLoadTracker = field(default_factory=ResourceLoadTracker)

    required_resources: Optional[ResourcePaths] = None
    """Paths issued in the challenge payload, if any."""

    IMMUTABLE_FIELDS: ClassVar[Tuple[str, ...]] = (
        "id",
        "created_at",
        "expires_at",
        "user_agent",
        "risk_score",
        "severity",
        "is_challenged",
        "required_resources",
    )

    # -------------------------------------------------------------------------
    # Mutations (applied through SessionStore.update)
    # -------------------------------------------------------------------------

    def record_resource(self, resource_type: ResourceType, path: str) -> None:
        self.resources.add(resource_type, path)

    def mark_verified(self) -> None:
        self.verified = True

    # -------------------------------------------------------------------------
    # Derived State
    # -------------------------------------------------------------------------

    def is_expired(self, now_ms: float) -> bool:
        return now_ms >= self.expires_at

    def resources_loaded(self, expected: Optional[ResourcePaths]) -> Tuple[bool, bool]:
        """(js_loaded, css_loaded) for the expected paths."""
        if expected is None:
            return False, False
        return (
            self.resources.has(ResourceType.JS, expected.js),
            self.resources.has(ResourceType.CSS, expected.css),
        )

    def status(self, now_ms: float) -> SessionStatus:
        if self.is_expired(now_ms):
            return SessionStatus.EXPIRED
        if self.verified:
            return SessionStatus.VERIFIED
        js_ok, css_ok = self.resources_loaded(self.required_resources)
        if js_ok and css_ok:
            return SessionStatus.RESOURCES_VERIFIED
        if self.is_challenged:
            return SessionStatus.CHALLENGED
        return SessionStatus.CREATED

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "user_agent": self.user_agent,
            "risk_score": self.risk_score,
            "severity": self.severity.value,
            "is_challenged": self.is_challenged,
            "verified": self.verified,
            "resources": self.resources.to_dict(),
            "required_resources": (
                self.required_resources.model_dump() if self.required_resources else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ChallengeSession:
        required = data.get("required_resources")
        return cls(
            id=data["id"],
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            user_agent=data.get("user_agent", ""),
            risk_score=int(data.get("risk_score", 0)),
            severity=Severity(data.get("severity", Severity.NONE.value)),
            is_challenged=bool(data.get("is_challenged", False)),
            verified=bool(data.get("verified", False)),
            resources=ResourceLoadTracker.from_dict(data.get("resources", {})),
            required_resources=ResourcePaths(**required) if required else None,
        )


SessionMutation = Callable[[ChallengeSession], Any]


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


def check_mutation(before: ChallengeSession, after: ChallengeSession) -> None:
    """
    Reject updates that break session invariants.

    Raises:
        SessionMutationError: creation-time field changed, a tracked
            resource was removed, or a verified session was un-verified.
    """
    for name in ChallengeSession.IMMUTABLE_FIELDS:
        if getattr(before, name) != getattr(after, name):
            raise SessionMutationError(f"Session field '{name}' is immutable ({before.id})")

    if not after.resources.covers(before.resources):
        raise SessionMutationError(f"Resource trackers are append-only ({before.id})")

    if before.verified and not after.verified:
        raise SessionMutationError(f"Verified sessions cannot be un-verified ({before.id})")


def summarize_sessions(sessions: Iterable[ChallengeSession]) -> ChallengeStats:
    """Aggregate counts over already-filtered live sessions."""
    total = 0
    challenged = 0
    verified = 0
    risk_sum = 0
    breakdown = SeverityBreakdown()

    for session in sessions:
        total += 1
        risk_sum += session.risk_score
        if session.is_challenged:
            challenged += 1
        if session.verified:
            verified += 1
        key = session.severity.value
        setattr(breakdown, key, getattr(breakdown, key) + 1)

    return ChallengeStats(
        total_sessions=total,
        challenged_sessions=challenged,
        verified_sessions=verified,
        average_risk_score=(risk_sum / total) if total else 0.0,
        by_severity=breakdown,
    )


# =============================================================================
# Store Interface
# =============================================================================

class SessionStore(ABC):
    """
    Keyed store of challenge sessions with lazy and swept expiry.

    Implementations must be safe for concurrent use from request threads
    and must never hand out references to their internal state.
    """

    MAX_ID_ATTEMPTS: int = 5

    def __init__(
        self,
        clock: Optional[Clock] = None,
        id_factory: Callable[[], str] = new_session_id,
    ) -> None:
        self.clock = clock or SystemClock()
        self.id_factory = id_factory

    def _build_session(
        self,
        session_id: str,
        user_agent: str,
        risk_score: int,
        severity: Severity,
        is_challenged: bool,
        ttl_seconds: float,
        required_resources: Optional[ResourcePaths],
    ) -> ChallengeSession:
        now = self.clock.now_ms()
        return ChallengeSession(
            id=session_id,
            created_at=now,
            expires_at=now + ttl_seconds * 1000.0,
            user_agent=user_agent,
            risk_score=risk_score,
            severity=severity,
            is_challenged=is_challenged,
            required_resources=required_resources,
        )

    @abstractmethod
    def create(
        self,
        user_agent: str,
        risk_score: int,
        severity: Severity,
        is_challenged: bool,
        ttl_seconds: float,
        required_resources: Optional[ResourcePaths] = None,
    ) -> ChallengeSession:
        """Insert a fresh session under a new unique id and return a copy."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[ChallengeSession]:
        """Return a copy of the live session, or None if unknown/expired."""

    @abstractmethod
    def update(self, session_id: str, mutation: SessionMutation) -> Optional[ChallengeSession]:
        """Apply `mutation` atomically; None if the session is absent/expired."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove a session regardless of expiry."""

    @abstractmethod
    def sweep_expired(self) -> int:
        """Remove every session with expires_at <= now; return the count."""

    @abstractmethod
    def live_sessions(self) -> List[ChallengeSession]:
        """Copies of every non-expired session."""

    def stats(self) -> ChallengeStats:
        return summarize_sessions(self.live_sessions())


# =============================================================================
# In-Memory Store
# =============================================================================

class InMemorySessionStore(SessionStore):
    """
    Mutex-guarded dict of sessions.

    Every operation is a single critical section, so a record that returns
    before a verify starts is always visible to it, and a sweep can never
    interleave with an update.
    """

    DEFAULT_MAX_SESSIONS: int = 100_000

    def __init__(
        self,
        clock: Optional[Clock] = None,
        id_factory: Callable[[], str] = new_session_id,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
    ) -> None:
        super().__init__(clock=clock, id_factory=id_factory)
        self.max_sessions = max_sessions
        self._sessions: Dict[str, ChallengeSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(
        self,
        user_agent: str,
        risk_score: int,
        severity: Severity,
        is_challenged: bool,
        ttl_seconds: float,
        required_resources: Optional[ResourcePaths] = None,
    ) -> ChallengeSession:
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                self._sweep_locked()
                if len(self._sessions) >= self.max_sessions:
                    raise StoreUnavailableError(
                        f"Session store full ({self.max_sessions} live sessions)"
                    )

            now = self.clock.now_ms()
            for attempt in range(self.MAX_ID_ATTEMPTS):
                session_id = self.id_factory()
                existing = self._sessions.get(session_id)
                if existing is not None and not existing.is_expired(now):
                    logger.warning(f"Session id collision on {session_id}, attempt {attempt + 1}")
                    continue

                session = self._build_session(
                    session_id, user_agent, risk_score, severity,
                    is_challenged, ttl_seconds, required_resources,
                )
                self._sessions[session_id] = session
                return copy.deepcopy(session)

        raise InternalError(f"Could not allocate a unique session id after {self.MAX_ID_ATTEMPTS} attempts")

    def get(self, session_id: str) -> Optional[ChallengeSession]:
        with self._lock:
            session = self._live_locked(session_id)
            return copy.deepcopy(session) if session else None

    def update(self, session_id: str, mutation: SessionMutation) -> Optional[ChallengeSession]:
        with self._lock:
            current = self._live_locked(session_id)
            if current is None:
                return None

            working = copy.deepcopy(current)
            mutation(working)
            check_mutation(current, working)

            self._sessions[session_id] = working
            return copy.deepcopy(working)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def sweep_expired(self) -> int:
        with self._lock:
            return self._sweep_locked()

    def live_sessions(self) -> List[ChallengeSession]:
        with self._lock:
            now = self.clock.now_ms()
            return [
                copy.deepcopy(s) for s in self._sessions.values()
                if not s.is_expired(now)
            ]

    def clear(self) -> None:
        """Drop every session. Primarily useful for testing."""
        with self._lock:
            self._sessions.clear()

    # -------------------------------------------------------------------------
    # Helpers (caller holds the lock)
    # -------------------------------------------------------------------------

    def _live_locked(self, session_id: str) -> Optional[ChallengeSession]:
        session = self._sessions.get(session_id)
        if session is None or session.is_expired(self.clock.now_ms()):
            return None
        return session

    def _sweep_locked(self) -> int:
        now = self.clock.now_ms()
        expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug(f"Swept {len(expired)} expired challenge sessions")
        return len(expired)
