"""
Challenge Test Suite - Shared Pytest Fixtures

This conftest.py provides fixtures for all test categories including:
- A manual clock for TTL tests without sleeping
- In-memory session store, analyzer, policy, dispatcher, verifier and stats
- Realistic browser header sets
- Redis connection and cleanup for integration tests

Usage:
    pytest tests/ -v -s
    pytest tests/ -m "not integration"
"""

import os
from typing import Dict

import pytest

from core.clock import ManualClock
from core.config import ChallengeSettings
from core.dispatcher import ChallengeDispatcher
from core.models.policy import ChallengePolicyEngine
from core.processors.fingerprint import FingerprintAnalyzer
from core.stats import ChallengeStatsService
from core.verifier import ResourceLoadVerifier
from persistence.session_store import InMemorySessionStore


# =============================================================================
# Header Sets
# =============================================================================

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

FIREFOX_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) "
    "Gecko/20100101 Firefox/121.0"
)

CURL_UA = "curl/8.4.0"

HEADLESS_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) HeadlessChrome/120.0.0.0 Safari/537.36"
)

GOOGLEBOT_UA = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


def chrome_header_set() -> Dict[str, str]:
    """Headers a current desktop Chrome sends on a top-level navigation."""
    return {
        "user-agent": CHROME_UA,
        "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "accept-language": "en-US,en;q=0.9",
        "accept-encoding": "gzip, deflate, br",
        "sec-ch-ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-site": "none",
        "sec-fetch-mode": "navigate",
        "sec-fetch-dest": "document",
    }


def firefox_header_set() -> Dict[str, str]:
    return {
        "user-agent": FIREFOX_UA,
        "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "accept-language": "en-US,en;q=0.5",
        "accept-encoding": "gzip, deflate, br",
        "sec-fetch-site": "none",
        "sec-fetch-mode": "navigate",
        "sec-fetch-dest": "document",
    }


def curl_header_set() -> Dict[str, str]:
    return {"user-agent": CURL_UA, "accept": "*/*"}


@pytest.fixture
def chrome_headers() -> Dict[str, str]:
    return chrome_header_set()


@pytest.fixture
def curl_headers() -> Dict[str, str]:
    return curl_header_set()


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def settings() -> ChallengeSettings:
    return ChallengeSettings()


@pytest.fixture
def memory_store(manual_clock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=manual_clock)


@pytest.fixture
def analyzer() -> FingerprintAnalyzer:
    return FingerprintAnalyzer()


@pytest.fixture
def policy() -> ChallengePolicyEngine:
    return ChallengePolicyEngine()


@pytest.fixture
def dispatcher(memory_store, analyzer, policy, settings, manual_clock) -> ChallengeDispatcher:
    return ChallengeDispatcher(
        store=memory_store,
        analyzer=analyzer,
        policy=policy,
        settings=settings,
        clock=manual_clock,
    )


@pytest.fixture
def verifier(memory_store) -> ResourceLoadVerifier:
    return ResourceLoadVerifier(store=memory_store)


@pytest.fixture
def stats_service(memory_store, manual_clock) -> ChallengeStatsService:
    return ChallengeStatsService(store=memory_store, clock=manual_clock)


# =============================================================================
# Redis Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def redis_client():
    """
    Session-scoped Redis client for integration tests.

    Requires a reachable Redis (REDIS_HOST / REDIS_PORT / REDIS_PASSWORD);
    the test is skipped otherwise.
    """
    import redis

    host = os.environ.get("REDIS_HOST", "localhost")
    port = int(os.environ.get("REDIS_PORT", "6379"))
    password = os.environ.get("REDIS_PASSWORD") or None

    try:
        client = redis.Redis(
            host=host,
            port=port,
            password=password,
            decode_responses=True,
        )
        client.ping()
    except redis.ConnectionError:
        pytest.skip(f"Redis not available at {host}:{port}")

    yield client
    client.close()


@pytest.fixture
def clean_redis(redis_client):
    """
    Function-scoped fixture that provides a clean Redis state.
    Flushes the database after each test for isolation.
    """
    yield redis_client
    redis_client.flushdb()
