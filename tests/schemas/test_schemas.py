"""
Pydantic Schema Validation Tests

Tests for input and output schemas to ensure proper validation,
camelCase serialization, and header snapshot handling.
"""

import pytest
from pydantic import ValidationError

from core.schemas.inputs import (
    RequestHeaders,
    ResourceLoadedPayload,
    ResourcePaths,
    ResourceType,
    SolutionPayload,
    VerifyResourcesPayload,
)
from core.schemas.outputs import (
    ChallengePayload,
    DispatchResult,
    FingerprintAnalysis,
    Severity,
)


# =============================================================================
# Header Snapshot
# =============================================================================

class TestRequestHeaders:

    def test_from_mapping_normalizes_keys(self):
        headers = RequestHeaders.from_mapping({
            "User-Agent": "curl/8.4.0",
            "ACCEPT_LANGUAGE": "en",
            "x-unknown": "dropped",
        })

        assert headers.user_agent == "curl/8.4.0"
        assert headers.get("accept-language") == "en"
        assert headers.present() == ["user-agent", "accept-language"]

    def test_blank_values_are_missing(self):
        headers = RequestHeaders.from_mapping({"accept": "  ", "via": None})
        assert headers.has("accept") is False
        assert headers.get("via") is None

    def test_from_mapping_passes_snapshot_through(self):
        snapshot = RequestHeaders(accept="*/*")
        assert RequestHeaders.from_mapping(snapshot) is snapshot

    def test_snapshot_is_frozen(self):
        snapshot = RequestHeaders(accept="*/*")
        with pytest.raises(ValidationError):
            snapshot.accept = "text/html"

    def test_redacted_hides_client_identifiers(self):
        headers = RequestHeaders.from_mapping({
            "user-agent": "curl/8.4.0",
            "x-forwarded-for": "203.0.113.7",
            "cf-connecting-ip": "203.0.113.7",
        })
        redacted = headers.redacted()

        assert redacted["user-agent"] == "<10 chars>"
        assert redacted["x-forwarded-for"] == "<redacted>"
        assert "203.0.113.7" not in str(redacted)


# =============================================================================
# Input Payloads
# =============================================================================

class TestInputPayloads:

    def test_resource_loaded_accepts_camel_case(self):
        payload = ResourceLoadedPayload.model_validate({
            "sessionId": "session_abc",
            "resourcePath": "/captcha/resources/verify.js",
            "type": "js",
        })
        assert payload.session_id == "session_abc"
        assert payload.type == ResourceType.JS

    def test_resource_loaded_accepts_snake_case(self):
        payload = ResourceLoadedPayload(session_id="session_abc", resource_path="/a.css", type="css")
        assert payload.type == ResourceType.CSS

    @pytest.mark.parametrize("body", [
        {"resourcePath": "/a.js", "type": "js"},
        {"sessionId": "session_abc", "type": "js"},
        {"sessionId": "session_abc", "resourcePath": "/a.js", "type": "img"},
        {"sessionId": "", "resourcePath": "/a.js", "type": "js"},
    ])
    def test_resource_loaded_rejects_bad_body(self, body):
        with pytest.raises(ValidationError):
            ResourceLoadedPayload.model_validate(body)

    def test_verify_resources_expected_optional(self):
        payload = VerifyResourcesPayload.model_validate({"sessionId": "session_abc"})
        assert payload.expected_resources is None

        payload = VerifyResourcesPayload.model_validate({
            "sessionId": "session_abc",
            "expectedResources": {"js": "/a.js", "css": "/a.css"},
        })
        assert payload.expected_resources == ResourcePaths(js="/a.js", css="/a.css")

    def test_resource_paths_must_be_non_empty(self):
        with pytest.raises(ValidationError):
            ResourcePaths(js="", css="/a.css")

    def test_solution_defaults(self):
        payload = SolutionPayload.model_validate({"sessionId": "session_abc"})
        assert payload.solution == {}


# =============================================================================
# Output Models
# =============================================================================

class TestOutputModels:

    def test_dispatch_result_wire_format(self):
        result = DispatchResult(
            should_challenge=True,
            session_id="session_abc",
            severity=Severity.HIGH,
            risk_score=90,
            reason="Scripted HTTP client user agent",
            payload=ChallengePayload(
                challenge_id="challenge_1",
                issued_at=1_700_000_000_000.0,
                required_resources=ResourcePaths(js="/a.js", css="/a.css"),
            ),
        )
        data = result.model_dump(mode="json", by_alias=True)

        assert data["shouldChallenge"] is True
        assert data["sessionId"] == "session_abc"
        assert data["severity"] == "high"
        assert data["payload"]["requiredResources"] == {"js": "/a.js", "css": "/a.css"}
        assert data["payload"]["puzzle"] == {}

    @pytest.mark.parametrize("score", [-1, 101])
    def test_analysis_score_bounds(self, score):
        with pytest.raises(ValidationError):
            FingerprintAnalysis(score=score)
