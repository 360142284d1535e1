"""
Challenge Dispatch API

FastAPI application exposing:
- GET/POST /api/captcha/challenge-request → challenge decision + payload
- POST /api/captcha/resource-loaded → record a JS/CSS load
- POST /api/captcha/verify-resources → resource gate (400 when not passed)
- POST /api/captcha/verify → CAPTCHA solution (503 without an oracle)
- GET/POST /api/captcha/stats → admin stats / session detail (Bearer token)

Resource endpoints are rate limited per session cookie or client IP.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import hmac
import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Body, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from core.config import ChallengeSettings
from core.dispatcher import ChallengeDispatcher
from core.errors import AuthorizationError, ValidationError
from core.schemas.inputs import (
    ChallengeRequestPayload,
    ResourceLoadedPayload,
    SessionDetailPayload,
    SolutionPayload,
    VerifyResourcesPayload,
)
from core.schemas.outputs import (
    ChallengeRequestResponse,
    ResourceLoadedResponse,
    SessionSnapshot,
    SolutionResponse,
    StatsResponse,
    VerifyResourcesResponse,
)
from core.stats import ChallengeStatsService
from core.verifier import CaptchaOracle, ResourceLoadVerifier
from persistence.event_logger import ChallengeEventLogger
from persistence.rate_limiter import InMemoryRateLimiter, RateLimitResult, RedisRateLimiter
from persistence.session_store import InMemorySessionStore, SessionStore


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


VERSION = "1.0.0"
SESSION_COOKIE = "captcha_session"

RESOURCE_LOADED_LIMIT = 30
VERIFY_RESOURCES_LIMIT = 20
RATE_WINDOW_SECONDS = 60


# =============================================================================
# Application State
# =============================================================================

class AppState:
    """Application state container."""
    settings: Optional[ChallengeSettings] = None
    store: Optional[SessionStore] = None
    dispatcher: Optional[ChallengeDispatcher] = None
    verifier: Optional[ResourceLoadVerifier] = None
    stats: Optional[ChallengeStatsService] = None
    limiter = None
    events: Optional[ChallengeEventLogger] = None
    oracle: Optional[CaptchaOracle] = None


state = AppState()


async def sweep_loop(store: SessionStore, interval_seconds: int) -> None:
    """Periodically drop expired sessions."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = store.sweep_expired()
            if removed:
                logger.info(f"Swept {removed} expired challenge sessions")
        except Exception as e:
            logger.error(f"Session sweep failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Challenge Dispatch API...")
    load_dotenv()
    state.settings = ChallengeSettings.from_env()

    if state.settings.store_backend == "redis":
        from persistence.connection import get_redis_client
        from persistence.redis_session_store import RedisSessionStore

        client = get_redis_client()
        state.store = RedisSessionStore(client)
        state.limiter = RedisRateLimiter(client)
    else:
        state.store = InMemorySessionStore()
        state.limiter = InMemoryRateLimiter()

    state.dispatcher = ChallengeDispatcher(store=state.store, settings=state.settings)
    state.verifier = ResourceLoadVerifier(store=state.store, oracle=state.oracle)
    state.stats = ChallengeStatsService(store=state.store)
    state.events = ChallengeEventLogger()

    sweeper = asyncio.create_task(sweep_loop(state.store, state.settings.sweep_interval_seconds))
    logger.info(f"Challenge Dispatch ready (store={state.settings.store_backend})")

    yield

    # Shutdown
    logger.info("Shutting down Challenge Dispatch API...")
    sweeper.cancel()


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Challenge Dispatch",
    description="Anti-abuse CAPTCHA challenge dispatch",
    version=VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": "Unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


# =============================================================================
# Helpers
# =============================================================================

def client_identifier(request: Request) -> str:
    """Rate-limit key: session cookie, else first forwarded hop, else peer IP."""
    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id:
        return session_id
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(
    request: Request,
    response: Response,
    prefix: str,
    max_requests: int,
) -> Optional[JSONResponse]:
    """Copy X-RateLimit headers onto the response, or return the 429 to send."""
    result: RateLimitResult = state.limiter.check(
        prefix, client_identifier(request), max_requests, RATE_WINDOW_SECONDS
    )
    if not result.allowed:
        return error_response(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Rate limit exceeded",
            f"{prefix.replace('-', '_')}_rate_limited",
            "captcha_api",
            headers=result.headers,
        )
    for name, value in result.headers.items():
        response.headers[name] = value
    return None


def error_response(
    status_code: int,
    detail: str,
    event: str,
    distinct_id: str,
    properties: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """Error body whose analytics event is captured after the response is sent."""
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail},
        headers=headers,
        background=BackgroundTask(state.events.capture, event, distinct_id, properties),
    )


def require_admin(request: Request) -> None:
    """Bearer check against CAPTCHA_ADMIN_TOKEN; no token configured denies all."""
    expected = state.settings.admin_token if state.settings else None
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if not expected or scheme.lower() != "bearer" or not token:
        raise AuthorizationError("Missing or invalid admin token")
    if not hmac.compare_digest(token.strip(), expected):
        raise AuthorizationError("Missing or invalid admin token")


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


# =============================================================================
# Challenge Endpoints
# =============================================================================

@app.api_route(
    "/api/captcha/challenge-request",
    methods=["GET", "POST"],
    response_model=ChallengeRequestResponse,
    response_model_exclude_none=True,
)
async def challenge_request(
    request: Request,
    response: Response,
    payload: Optional[ChallengeRequestPayload] = Body(None),
):
    """
    Decide whether this client must solve a challenge.

    - Reuses the session from the body or the captcha_session cookie
    - Sets the captcha_session cookie to the resolved session id
    """
    existing = (payload.session_id if payload else None) or request.cookies.get(SESSION_COOKIE)

    try:
        result = state.dispatcher.dispatch(
            headers=dict(request.headers),
            user_agent=request.headers.get("user-agent", ""),
            existing_session_id=existing,
        )
    except Exception as e:
        logger.error(f"Challenge request error: {e}")
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to process challenge request",
            "captcha_challenge_request_error",
            "captcha_api",
            {"message": str(e)},
        )

    response.set_cookie(
        SESSION_COOKIE,
        result.session_id,
        max_age=state.settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
    )

    if not result.should_challenge:
        return ChallengeRequestResponse(required=False, session_id=result.session_id)

    return ChallengeRequestResponse(
        required=True,
        session_id=result.session_id,
        severity=result.severity,
        reason=result.reason,
        payload=result.payload,
        resources=result.payload.required_resources if result.payload else None,
    )


@app.post("/api/captcha/resource-loaded", response_model=ResourceLoadedResponse)
async def resource_loaded(
    payload: ResourceLoadedPayload,
    request: Request,
    response: Response,
):
    """Record that the client fetched a challenge resource."""
    limited = enforce_rate_limit(request, response, "captcha-resource-loaded", RESOURCE_LOADED_LIMIT)
    if limited is not None:
        return limited

    recorded = state.verifier.record_resource_load(
        payload.session_id, payload.resource_path, payload.type
    )
    if not recorded:
        return error_response(
            status.HTTP_404_NOT_FOUND,
            "Session not found or expired",
            "captcha_resource_session_not_found",
            payload.session_id,
            {"resourcePath": payload.resource_path, "type": payload.type.value},
            headers={k: v for k, v in response.headers.items() if k.lower().startswith("x-ratelimit")},
        )

    return ResourceLoadedResponse(
        success=True,
        message=f"{payload.type.value.upper()} resource tracked",
    )


@app.post(
    "/api/captcha/verify-resources",
    response_model=VerifyResourcesResponse,
    response_model_exclude_none=True,
)
async def verify_resources(
    payload: VerifyResourcesPayload,
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
):
    """Resource gate: 400 unless every expected resource was loaded."""
    limited = enforce_rate_limit(request, response, "captcha-verify-resources", VERIFY_RESOURCES_LIMIT)
    if limited is not None:
        return limited

    verification = state.verifier.verify_resource_loads(payload.session_id, payload.expected_resources)
    if not verification.passed:
        background_tasks.add_task(
            state.events.capture, "captcha_verify_resources_failed", payload.session_id,
            {"reason": verification.reason},
        )
        body = VerifyResourcesResponse(
            passed=False,
            reason=verification.reason,
            js_loaded=verification.js_loaded,
            css_loaded=verification.css_loaded,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(by_alias=True, exclude_none=True),
            headers={k: v for k, v in response.headers.items() if k.lower().startswith("x-ratelimit")},
        )

    return VerifyResourcesResponse(
        passed=True,
        reason=verification.reason,
        js_loaded=verification.js_loaded,
        css_loaded=verification.css_loaded,
        risk_score=verification.risk_score,
        is_challenged=verification.is_challenged,
        requires_captcha=verification.is_challenged,
        message="Resources verified",
    )


@app.post("/api/captcha/verify", response_model=SolutionResponse)
async def verify_solution(payload: SolutionPayload, background_tasks: BackgroundTasks):
    """Submit a CAPTCHA solution; requires the resource gate to pass first."""
    if state.verifier.oracle is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="CAPTCHA verification is not configured"
        )

    result = state.verifier.confirm_solution(
        payload.session_id, payload.solution, payload.expected_resources
    )
    if not result.accepted:
        background_tasks.add_task(
            state.events.capture, "captcha_verification_failed", payload.session_id,
            {"reason": result.reason},
        )
        body = SolutionResponse(success=False, reason=result.reason)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(by_alias=True),
        )

    background_tasks.add_task(state.events.capture, "captcha_solved", payload.session_id)
    return SolutionResponse(success=True, reason=result.reason)


# =============================================================================
# Admin Endpoints
# =============================================================================

@app.get("/api/captcha/stats", response_model=StatsResponse)
async def challenge_stats(request: Request):
    """Aggregate counts over live sessions."""
    require_admin(request)
    try:
        stats = state.stats.get_challenge_stats()
    except Exception as e:
        logger.error(f"Stats error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load challenge stats"
        )
    return StatsResponse(timestamp=datetime.now(timezone.utc), stats=stats)


@app.post("/api/captcha/stats", response_model=SessionSnapshot)
async def session_detail(payload: SessionDetailPayload, request: Request):
    """Debug view of one session."""
    require_admin(request)
    try:
        snapshot = state.stats.get_session_detail(payload.session_id)
    except Exception as e:
        logger.error(f"Session detail error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load session"
        )
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )
    return snapshot


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
