"""
Unit Tests for Core Components
Configuration layering and the lifecycle event publisher
"""
import json
import pytest
from unittest.mock import AsyncMock

from leaddialer.core.config import ConfigManager, load_settings
from leaddialer.domain.models.events import LifecycleEvent, LifecycleEventType
from leaddialer.infrastructure.events.publisher import CallEventPublisher


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "default.yaml").write_text(
        "dialer:\n"
        "  concurrency_limit: 4\n"
        "  tick_interval_seconds: 2\n"
        "retry:\n"
        "  max_attempts: 3\n"
        "  busy_delay_minutes: 15\n"
        "telephony:\n"
        "  caller_id: ${TEST_DIALER_CALLER_ID}\n"
    )
    (tmp_path / "staging.yaml").write_text(
        "dialer:\n"
        "  concurrency_limit: 8\n"
    )
    return tmp_path


class TestConfigManager:
    """Tests for YAML configuration loading"""

    def test_dot_notation_lookup(self, config_dir):
        config = ConfigManager(env="development", config_dir=config_dir)

        assert config.get("dialer.concurrency_limit") == 4
        assert config.get("dialer.missing", "fallback") == "fallback"

    def test_environment_file_overrides_default(self, config_dir):
        config = ConfigManager(env="staging", config_dir=config_dir)

        assert config.get("dialer.concurrency_limit") == 8
        assert config.get("dialer.tick_interval_seconds") == 2

    def test_env_var_substitution(self, config_dir, monkeypatch):
        monkeypatch.setenv("TEST_DIALER_CALLER_ID", "+15557654321")

        config = ConfigManager(env="development", config_dir=config_dir)

        assert config.get("telephony.caller_id") == "+15557654321"

    def test_flatten_maps_to_settings_fields(self, config_dir):
        flat = ConfigManager(env="development", config_dir=config_dir).flatten()

        assert flat["concurrency_limit"] == 4
        assert flat["busy_delay_minutes"] == 15


class TestLoadSettings:
    """Tests for YAML defaults layered under the environment"""

    def test_yaml_values_used(self, config_dir, monkeypatch):
        monkeypatch.delenv("CONCURRENCY_LIMIT", raising=False)

        settings = load_settings(env="staging", config_dir=config_dir)

        assert settings.concurrency_limit == 8
        assert settings.tick_interval_seconds == 2

    def test_environment_wins_over_yaml(self, config_dir, monkeypatch):
        monkeypatch.setenv("CONCURRENCY_LIMIT", "2")

        settings = load_settings(env="staging", config_dir=config_dir)

        assert settings.concurrency_limit == 2

    def test_defaults_without_yaml(self, tmp_path, monkeypatch):
        for name in ("CONCURRENCY_LIMIT", "MAX_ATTEMPTS", "STUCK_THRESHOLD_SECONDS"):
            monkeypatch.delenv(name, raising=False)

        settings = load_settings(env="development", config_dir=tmp_path)

        assert settings.concurrency_limit == 5
        assert settings.max_attempts == 3
        assert settings.stuck_threshold_seconds == 300
        assert settings.recovery_interval_seconds == 60


def _event():
    return LifecycleEvent(
        event=LifecycleEventType.CALL_INITIATED,
        lead_id="lead-1",
        agent_id="agent-1",
        call_attempt_id="attempt-1",
        status="initiated",
    )


class TestCallEventPublisher:
    """Tests for best-effort event publishing"""

    @pytest.mark.asyncio
    async def test_publishes_json_to_channel(self):
        redis_client = AsyncMock()
        publisher = CallEventPublisher(channel="dialer:test", client=redis_client)

        assert await publisher.publish(_event()) is True

        channel, message = redis_client.publish.await_args.args
        assert channel == "dialer:test"
        payload = json.loads(message)
        assert payload["event"] == "call_initiated"
        assert payload["lead_id"] == "lead-1"
        assert payload["call_attempt_id"] == "attempt-1"
        assert "timestamp" in payload

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self):
        redis_client = AsyncMock()
        redis_client.publish.side_effect = ConnectionError("redis down")
        publisher = CallEventPublisher(client=redis_client)

        assert await publisher.publish(_event()) is False
        assert publisher.get_stats() == {"published": 0, "dropped": 1}

    @pytest.mark.asyncio
    async def test_without_channel_drops(self):
        publisher = CallEventPublisher(redis_url="")
        await publisher.initialize()

        assert await publisher.publish(_event()) is False

    @pytest.mark.asyncio
    async def test_close_releases_client(self):
        redis_client = AsyncMock()
        publisher = CallEventPublisher(client=redis_client)

        await publisher.close()

        redis_client.aclose.assert_awaited_once()
