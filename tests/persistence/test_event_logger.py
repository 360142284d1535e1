"""
Challenge Event Logger Unit Tests

The Supabase sink is best-effort: disabled without credentials and never
raises on insert failure.
"""

from unittest.mock import MagicMock

from persistence.event_logger import ChallengeEventLogger


class TestChallengeEventLogger:

    def test_disabled_without_credentials(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_KEY", raising=False)

        events = ChallengeEventLogger()

        assert events.enabled is False
        events.capture("captcha_solved", "session_abc")  # no-op

    def test_inserts_into_captcha_events(self):
        client = MagicMock()
        events = ChallengeEventLogger(client=client)

        events.capture("captcha_verify_resources_failed", "session_abc", {"reason": "Missing resources: JS"})

        client.table.assert_called_once_with("captcha_events")
        entry = client.table.return_value.insert.call_args[0][0]
        assert entry["event"] == "captcha_verify_resources_failed"
        assert entry["distinct_id"] == "session_abc"
        assert entry["event_id"].startswith("evt_")
        assert entry["payload"]["properties"] == {"reason": "Missing resources: JS"}
        client.table.return_value.insert.return_value.execute.assert_called_once()

    def test_insert_failure_is_swallowed(self):
        client = MagicMock()
        client.table.return_value.insert.return_value.execute.side_effect = RuntimeError("supabase down")
        events = ChallengeEventLogger(client=client)

        events.capture("captcha_solved", "session_abc")
