"""
Challenge Dispatcher Tests

End-to-end decisions over an in-memory store: challenge issuance,
pass-through, session reuse, threshold overrides and fail-open behavior.
"""

import logging
from unittest.mock import MagicMock

import pytest

from core.config import ChallengeSettings
from core.dispatcher import DEGRADED_REASON, LOW_RISK_REASON, ChallengeDispatcher
from core.errors import StoreUnavailableError
from core.schemas.outputs import Severity
from persistence.session_store import InMemorySessionStore

# Import helpers from conftest
from tests.conftest import CHROME_UA, CURL_UA, HEADLESS_UA


class UnavailableStore(InMemorySessionStore):
    """Store whose writes always fail."""

    def create(self, *args, **kwargs):
        raise StoreUnavailableError("backend down")


# =============================================================================
# Scenario: scripted client
# =============================================================================

class TestScriptedClient:
    """curl with minimal headers is challenged at high severity."""

    def test_curl_is_challenged(self, dispatcher, memory_store, curl_headers):
        result = dispatcher.dispatch(curl_headers, CURL_UA)

        assert result.should_challenge is True
        assert result.severity == Severity.HIGH
        assert result.risk_score == 90
        assert result.payload is not None
        assert result.payload.required_resources.js == "/captcha/resources/verify.js"
        assert result.payload.required_resources.css == "/captcha/resources/verify.css"

        session = memory_store.get(result.session_id)
        assert session is not None
        assert session.is_challenged is True
        assert session.required_resources == result.payload.required_resources
        print(f"\n✅ curl challenged: {result.reason}")

    def test_reason_lists_top_signals(self, dispatcher, curl_headers):
        result = dispatcher.dispatch(curl_headers, CURL_UA)

        assert result.reason.startswith("Scripted HTTP client user agent")
        assert result.reason.count(";") == 1

    def test_payload_carries_issue_time(self, dispatcher, curl_headers, manual_clock):
        result = dispatcher.dispatch(curl_headers, CURL_UA)
        assert result.payload.issued_at == manual_clock.now_ms()
        assert result.payload.challenge_id.startswith("challenge_")

    def test_issue_log_carries_abuse_rating(self, dispatcher, curl_headers, caplog):
        with caplog.at_level(logging.INFO, logger="core.dispatcher"):
            result = dispatcher.dispatch(curl_headers, CURL_UA)

        issued = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Challenge issued")]
        assert len(issued) == 1
        assert f"session={result.session_id}" in issued[0]
        assert "abuser=True confidence=0.90" in issued[0]

    def test_headless_browser_is_challenged(self, dispatcher, chrome_headers):
        chrome_headers["user-agent"] = HEADLESS_UA
        result = dispatcher.dispatch(chrome_headers, HEADLESS_UA)
        assert result.should_challenge is True
        assert result.severity == Severity.HIGH


# =============================================================================
# Scenario: real browser
# =============================================================================

class TestRealBrowser:

    def test_chrome_passes(self, dispatcher, memory_store, chrome_headers):
        result = dispatcher.dispatch(chrome_headers, CHROME_UA)

        assert result.should_challenge is False
        assert result.severity == Severity.NONE
        assert result.reason == LOW_RISK_REASON
        assert result.payload is None

        session = memory_store.get(result.session_id)
        assert session is not None
        assert session.is_challenged is False
        assert session.required_resources is None

    def test_low_band_is_not_challenged(self, dispatcher, chrome_headers):
        chrome_headers.pop("sec-ch-ua")
        result = dispatcher.dispatch(chrome_headers, CHROME_UA)

        assert result.should_challenge is False
        assert result.severity == Severity.LOW
        assert result.risk_score == 15


# =============================================================================
# Session Reuse
# =============================================================================

class TestSessionReuse:

    def test_repeat_dispatch_is_idempotent(self, dispatcher, memory_store, curl_headers):
        first = dispatcher.dispatch(curl_headers, CURL_UA)
        second = dispatcher.dispatch(curl_headers, CURL_UA, existing_session_id=first.session_id)

        assert second.session_id == first.session_id
        assert second.risk_score == first.risk_score
        assert second.severity == first.severity
        assert second.should_challenge == first.should_challenge
        assert len(memory_store) == 1

    def test_reuse_does_not_rescore(self, dispatcher, chrome_headers, curl_headers):
        """A clean session stays clean even if later headers look bad."""
        first = dispatcher.dispatch(chrome_headers, CHROME_UA)
        second = dispatcher.dispatch(curl_headers, CURL_UA, existing_session_id=first.session_id)

        assert second.session_id == first.session_id
        assert second.should_challenge is False
        assert second.risk_score == 0

    def test_expired_session_is_replaced(self, dispatcher, curl_headers, manual_clock, settings):
        first = dispatcher.dispatch(curl_headers, CURL_UA)
        manual_clock.advance(settings.session_ttl_seconds)

        second = dispatcher.dispatch(curl_headers, CURL_UA, existing_session_id=first.session_id)
        assert second.session_id != first.session_id

    def test_unknown_session_is_replaced(self, dispatcher, chrome_headers):
        result = dispatcher.dispatch(chrome_headers, CHROME_UA, existing_session_id="session_forged")
        assert result.session_id != "session_forged"

    def test_verified_session_passes(self, dispatcher, memory_store, curl_headers):
        first = dispatcher.dispatch(curl_headers, CURL_UA)
        memory_store.update(first.session_id, lambda s: s.mark_verified())

        second = dispatcher.dispatch(curl_headers, CURL_UA, existing_session_id=first.session_id)
        assert second.should_challenge is False
        assert second.severity == Severity.HIGH
        assert second.reason == "session already verified"
        assert second.payload is None
        assert memory_store.get(first.session_id).is_challenged is True


# =============================================================================
# Thresholds
# =============================================================================

class TestThresholdOverrides:

    def test_lower_thresholds_challenge_more(self, dispatcher, chrome_headers):
        chrome_headers.pop("sec-ch-ua")  # score 15
        result = dispatcher.dispatch(chrome_headers, CHROME_UA, hard_threshold=20, soft_threshold=10)

        assert result.should_challenge is True
        assert result.severity == Severity.MEDIUM

    def test_invalid_thresholds_use_defaults(self, dispatcher, curl_headers):
        result = dispatcher.dispatch(curl_headers, CURL_UA, hard_threshold=20, soft_threshold=95)

        assert result.should_challenge is True
        assert result.severity == Severity.HIGH

    def test_settings_thresholds(self, memory_store, chrome_headers, manual_clock):
        dispatcher = ChallengeDispatcher(
            store=memory_store,
            settings=ChallengeSettings(hard_threshold=30, soft_threshold=10),
            clock=manual_clock,
        )
        chrome_headers.pop("sec-ch-ua")
        assert dispatcher.dispatch(chrome_headers, CHROME_UA).should_challenge is True

    def test_configured_ttl(self, memory_store, curl_headers, manual_clock):
        dispatcher = ChallengeDispatcher(
            store=memory_store,
            settings=ChallengeSettings(session_ttl_seconds=60),
        )
        result = dispatcher.dispatch(curl_headers, CURL_UA)

        manual_clock.advance(60)
        assert memory_store.get(result.session_id) is None


# =============================================================================
# Puzzle
# =============================================================================

class TestPuzzle:

    def test_puzzle_factory(self, memory_store, curl_headers):
        dispatcher = ChallengeDispatcher(
            store=memory_store,
            puzzle_factory=lambda: {"kind": "slider", "target": 137},
        )
        result = dispatcher.dispatch(curl_headers, CURL_UA)
        assert result.payload.puzzle == {"kind": "slider", "target": 137}

    def test_failing_puzzle_factory_still_challenges(self, memory_store, curl_headers):
        def broken():
            raise RuntimeError("provider down")

        dispatcher = ChallengeDispatcher(store=memory_store, puzzle_factory=broken)
        result = dispatcher.dispatch(curl_headers, CURL_UA)

        assert result.should_challenge is True
        assert result.payload.puzzle == {}


# =============================================================================
# Failure Semantics
# =============================================================================

class TestFailureSemantics:

    def test_store_failure_fails_open(self, manual_clock, curl_headers):
        store = UnavailableStore(clock=manual_clock)
        dispatcher = ChallengeDispatcher(store=store)

        result = dispatcher.dispatch(curl_headers, CURL_UA)

        assert result.should_challenge is False
        assert result.reason == DEGRADED_REASON
        assert result.severity == Severity.HIGH
        assert result.session_id.startswith("session_")
        assert store.get(result.session_id) is None
        print(f"\n✅ Failed open with unbacked id {result.session_id}")

    def test_store_failure_fails_closed_when_configured(self, manual_clock, curl_headers):
        store = UnavailableStore(clock=manual_clock)
        dispatcher = ChallengeDispatcher(store=store, settings=ChallengeSettings(fail_closed=True))

        result = dispatcher.dispatch(curl_headers, CURL_UA)

        assert result.should_challenge is True
        assert result.payload is not None

    def test_analyzer_failure(self, memory_store, chrome_headers):
        analyzer = MagicMock()
        analyzer.analyze.side_effect = RuntimeError("regex blew up")
        dispatcher = ChallengeDispatcher(store=memory_store, analyzer=analyzer)

        result = dispatcher.dispatch(chrome_headers, CHROME_UA)

        assert result.should_challenge is False
        assert result.severity == Severity.NONE
        assert len(memory_store) == 0

    def test_lookup_failure_scores_afresh(self, manual_clock, chrome_headers):
        store = InMemorySessionStore(clock=manual_clock)
        store.get = MagicMock(side_effect=StoreUnavailableError("read timeout"))
        dispatcher = ChallengeDispatcher(store=store)

        result = dispatcher.dispatch(chrome_headers, CHROME_UA, existing_session_id="session_x")

        assert result.session_id != "session_x"
        assert result.reason == LOW_RISK_REASON

    @pytest.mark.parametrize("headers,ua", [
        (None, None),
        ({}, ""),
        ({"user-agent": ""}, "   "),
    ])
    def test_degenerate_input_yields_valid_result(self, dispatcher, headers, ua):
        result = dispatcher.dispatch(headers, ua)
        assert 0 <= result.risk_score <= 100
        assert result.session_id
