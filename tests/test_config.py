"""Tests for configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from chat_triage.config import (
    DEFAULT_KEYWORDS,
    Config,
    ReconnectConfig,
    ResponderConfig,
    TriageConfig,
    TwitchConfig,
    XConfig,
    get_bot_names,
    load_config,
)


class TestTriageConfig:
    """Tests for triage configuration."""

    def test_defaults(self):
        """Test default triage values."""
        cfg = TriageConfig()
        assert cfg.max_responses_per_minute == 6
        assert cfg.min_seconds_between_responses == 8.0
        assert cfg.auto_respond_threshold == 60.0
        assert cfg.random_sample_size == 10
        assert cfg.random_sample_chance == 0.15
        assert cfg.subscribers_and_donations_only is True
        assert cfg.queue_max_size == 100
        assert cfg.interesting_keywords == DEFAULT_KEYWORDS

    def test_keyword_lists_are_independent(self):
        """Each config gets its own keyword list."""
        a = TriageConfig()
        b = TriageConfig()
        a.interesting_keywords.append("speedrun")
        assert "speedrun" not in b.interesting_keywords

    def test_probability_bounds(self):
        """Sample chance must be between 0 and 1."""
        with pytest.raises(ValidationError):
            TriageConfig(random_sample_chance=1.5)

        with pytest.raises(ValidationError):
            TriageConfig(random_sample_chance=-0.1)

    def test_rate_must_be_positive(self):
        with pytest.raises(ValidationError):
            TriageConfig(max_responses_per_minute=0)


class TestPlatformConfig:
    """Tests for Twitch and X configuration."""

    def test_twitch_defaults(self):
        cfg = TwitchConfig()
        assert cfg.irc_url == "wss://irc-ws.chat.twitch.tv:443"
        assert cfg.eventsub_url == "wss://eventsub.wss.twitch.tv/ws"
        assert cfg.access_token is None

    def test_tokens_are_secret(self):
        """Tokens are not printed in reprs."""
        cfg = TwitchConfig(access_token="oauth:supersecret")
        assert "supersecret" not in repr(cfg)
        assert cfg.access_token.get_secret_value() == "oauth:supersecret"

    def test_x_defaults(self):
        cfg = XConfig()
        assert cfg.poll_interval_seconds == 15.0
        assert cfg.rate_limit_fallback_seconds == 900.0

    def test_reconnect_defaults(self):
        cfg = ReconnectConfig()
        assert (cfg.base_delay, cfg.max_delay, cfg.max_attempts) == (1.0, 30.0, 5)

    def test_response_length_floor(self):
        with pytest.raises(ValidationError):
            ResponderConfig(max_response_length=5)


class TestLoadConfig:
    """Tests for config file loading."""

    def test_load_from_file(self, temp_config_file: Path):
        """Test loading config from YAML file."""
        config = load_config(temp_config_file)
        assert config.twitch.channel == "testchannel"
        assert config.x.enabled is False
        assert config.triage.max_responses_per_minute == 4
        assert config.triage.auto_respond_threshold == 75
        assert config.triage.interesting_keywords == ["speedrun"]
        assert config.responder.streamer_name == "Tau"
        # Untouched sections keep their defaults
        assert config.reconnect.max_attempts == 5

    def test_missing_file_uses_defaults(self, tmp_path: Path):
        """Test that a missing config file yields defaults."""
        config = load_config(tmp_path / "nonexistent.yaml")
        assert isinstance(config, Config)
        assert config.triage.max_responses_per_minute == 6

    def test_empty_sections_ignored(self, tmp_path: Path):
        """A bare 'x:' key parses as None and must not wipe the section."""
        path = tmp_path / "config.yaml"
        path.write_text("x:\ntriage:\n  queue_max_size: 50\n")
        config = load_config(path)
        assert config.x.api_url == "https://api.twitter.com/2"
        assert config.triage.queue_max_size == 50

    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """Nested values can come from TRIAGE_* variables."""
        monkeypatch.setenv("TRIAGE_TRIAGE__MAX_RESPONSES_PER_MINUTE", "3")
        monkeypatch.setenv("TRIAGE_X__BOT_USERNAME", "tau_on_x")
        config = load_config(tmp_path / "nonexistent.yaml")
        assert config.triage.max_responses_per_minute == 3
        assert config.x.bot_username == "tau_on_x"

    def test_env_outranks_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """Environment wins per key; the rest of the YAML section survives."""
        path = tmp_path / "config.yaml"
        path.write_text("triage:\n  max_responses_per_minute: 8\n  queue_max_size: 50\n")
        monkeypatch.setenv("TRIAGE_TRIAGE__MAX_RESPONSES_PER_MINUTE", "3")
        config = load_config(path)
        assert config.triage.max_responses_per_minute == 3
        assert config.triage.queue_max_size == 50

    def test_invalid_values_rejected(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("triage:\n  random_sample_chance: 2.0\n")
        with pytest.raises(ValidationError):
            load_config(path)


class TestBotNames:
    def test_merges_usernames(self):
        config = Config(
            twitch=TwitchConfig(bot_username="tau_bot"),
            x=XConfig(bot_username="TauOnX"),
            triage=TriageConfig(bot_names=["NeuralTau", "TAU_BOT"]),
        )
        assert get_bot_names(config) == ["NeuralTau", "TAU_BOT", "TauOnX"]

    def test_empty(self):
        assert get_bot_names(Config()) == []
