"""Configuration loading and validation."""

from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_KEYWORDS = [
    "minecraft", "ai", "bot", "help", "how", "what", "why",
    "diamond", "creeper", "die", "death", "kill", "build", "craft",
    "love", "hate", "amazing", "insane", "crazy",
    "donate", "sub", "follow",
]


class TwitchConfig(BaseModel):
    """Twitch IRC + EventSub configuration."""

    enabled: bool = True
    access_token: SecretStr | None = None
    client_id: str = ""
    channel: str = ""
    bot_username: str = ""
    irc_url: str = "wss://irc-ws.chat.twitch.tv:443"
    eventsub_url: str = "wss://eventsub.wss.twitch.tv/ws"
    helix_url: str = "https://api.twitch.tv/helix"
    keepalive_seconds: Annotated[float, Field(gt=0)] = 60.0


class XConfig(BaseModel):
    """X API v2 configuration.

    The bearer token is enough for reading mentions; posting needs the four
    OAuth 1.0a user-context credentials.
    """

    enabled: bool = True
    bearer_token: SecretStr | None = None
    api_key: SecretStr | None = None
    api_secret: SecretStr | None = None
    access_token: SecretStr | None = None
    access_secret: SecretStr | None = None
    bot_username: str = ""
    api_url: str = "https://api.twitter.com/2"
    poll_interval_seconds: Annotated[float, Field(gt=0)] = 15.0
    rate_limit_fallback_seconds: Annotated[float, Field(gt=0)] = 900.0


class ReconnectConfig(BaseModel):
    """Exponential backoff for socket reconnects."""

    base_delay: Annotated[float, Field(gt=0)] = 1.0
    max_delay: Annotated[float, Field(gt=0)] = 30.0
    max_attempts: Annotated[int, Field(ge=0)] = 5


class TriageConfig(BaseModel):
    """Chat manager scoring, queue and rate-limit settings."""

    max_responses_per_minute: Annotated[int, Field(ge=1)] = 6
    min_seconds_between_responses: Annotated[float, Field(ge=0)] = 8.0
    auto_respond_threshold: Annotated[float, Field(ge=0)] = 60.0
    random_sample_size: Annotated[int, Field(ge=1)] = 10
    random_sample_chance: Annotated[float, Field(ge=0.0, le=1.0)] = 0.15

    # Cost control: only paying/subscribed viewers reach the reply generator
    subscribers_and_donations_only: bool = True

    ignore_bots: bool = True
    min_message_length: Annotated[int, Field(ge=0)] = 3
    max_message_length: Annotated[int, Field(ge=1)] = 500

    interesting_keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_KEYWORDS))
    bot_names: list[str] = Field(default_factory=list)
    mega_donation_threshold: Annotated[float, Field(ge=0)] = 10.0

    queue_max_size: Annotated[int, Field(ge=1)] = 100
    queue_max_age_seconds: Annotated[float, Field(gt=0)] = 300.0
    stale_after_seconds: Annotated[float, Field(gt=0)] = 120.0
    tick_interval_seconds: Annotated[float, Field(gt=0)] = 2.0
    dedup_window_seconds: Annotated[float, Field(ge=0)] = 30.0


class ResponderConfig(BaseModel):
    """Reply generation settings."""

    enabled: bool = True
    anthropic_api_key: SecretStr | None = None
    model: str = "claude-sonnet-4-5"
    streamer_name: str = "the streamer"
    max_response_length: Annotated[int, Field(ge=10)] = 280
    history_size: Annotated[int, Field(ge=0)] = 10
    include_game_context: bool = True
    viewer_db_path: Path = Path("./data/viewers.db")


class DebugConfig(BaseModel):
    """Debug stats server."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: Annotated[int, Field(ge=1, le=65535)] = 8080


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    twitch: TwitchConfig = Field(default_factory=TwitchConfig)
    x: XConfig = Field(default_factory=XConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    triage: TriageConfig = Field(default_factory=TriageConfig)
    responder: ResponderConfig = Field(default_factory=ResponderConfig)
    debug: DebugConfig = Field(default_factory=DebugConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # load_config passes YAML as init kwargs; the environment outranks it
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (TRIAGE_* prefix)
    2. YAML config file
    3. Default values

    Nested sections are merged, so a token can come from the environment
    while the rest of its section lives in YAML.

    Args:
        config_path: Path to YAML config file. If None, tries ./config.yaml

    Returns:
        Validated configuration object
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    yaml_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

    # Filter out None values from YAML (e.g., "x:" with no values parses as None)
    yaml_config = {k: v for k, v in yaml_config.items() if v is not None}

    return Config(**yaml_config)


def get_bot_names(config: Config) -> list[str]:
    """Names viewers use to address the bot, for mention detection."""
    names = list(config.triage.bot_names)
    for candidate in (config.twitch.bot_username, config.x.bot_username):
        if candidate and candidate.lower() not in (n.lower() for n in names):
            names.append(candidate)
    return names
