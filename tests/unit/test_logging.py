"""Unit tests for logging service."""

import structlog

from reminder_engine.services.logging_service import configure_logging, get_logger, redact_sensitive


class TestRedactSensitive:
    """Tests for redact_sensitive processor."""

    def test_redacts_feedback_comment(self):
        """Test free-text comments are redacted."""
        event_dict = {"comment": "I was at the clinic", "event": "strategy_adapted"}
        result = redact_sensitive(None, None, event_dict)
        assert result["comment"] == "REDACTED"
        assert result["event"] == "strategy_adapted"

    def test_redacts_location_fields(self):
        """Test location names and coordinates are redacted."""
        event_dict = {"location_name": "12 Oak Street", "coordinates": [51.5, -0.1]}
        result = redact_sensitive(None, None, event_dict)
        assert result["location_name"] == "REDACTED"
        assert result["coordinates"] == "REDACTED"

    def test_redacts_secret_and_token_in_key_name(self):
        """Test fields containing 'secret' or 'token' are redacted."""
        event_dict = {"client_secret": "abc123", "SESSION_TOKEN": "xyz"}
        result = redact_sensitive(None, None, event_dict)
        assert result["client_secret"] == "REDACTED"
        assert result["SESSION_TOKEN"] == "REDACTED"

    def test_preserves_non_sensitive_fields(self):
        """Test non-sensitive fields are preserved."""
        event_dict = {
            "correlation_id": "abc-123",
            "location_type": "home",
            "confidence": 0.8,
        }
        result = redact_sensitive(None, None, event_dict)
        assert result == {
            "correlation_id": "abc-123",
            "location_type": "home",
            "confidence": 0.8,
        }


class TestConfigureLogging:
    def test_json_output_is_redacted(self, capsys):
        configure_logging("INFO", "json")
        structlog.get_logger("test").info("feedback_received", comment="private", rating=4)

        out = capsys.readouterr().out
        assert '"event": "feedback_received"' in out
        assert "private" not in out
        assert '"rating": 4' in out

    def test_level_filters_debug(self, capsys):
        configure_logging("WARNING")
        structlog.get_logger("test").info("should_not_appear")
        assert "should_not_appear" not in capsys.readouterr().out

    def test_get_logger_binds_name(self, capsys):
        configure_logging("INFO")
        get_logger("engine").info("bound")
        assert '"logger_name": "engine"' in capsys.readouterr().out

    def teardown_method(self):
        structlog.reset_defaults()
