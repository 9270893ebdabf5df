"""Configuration management for Stripe Chat."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.stripe-chat/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

DEFAULT_MODEL_API_URL = "https://api.dat1.co/api/v1/collection/gpt-120-oss/invoke-chat"
DEFAULT_MCP_URL = "https://mcp.stripe.com/"


class ModelConfig(BaseModel):
    """Model provider configuration."""

    provider: str = "dat1"
    api_url: str = DEFAULT_MODEL_API_URL
    api_key: str = ""
    temperature: float = 0.7
    max_tokens: int = 5000
    timeout: float = 120.0


class MCPConfig(BaseModel):
    """Stripe MCP server configuration."""

    url: str = DEFAULT_MCP_URL
    secret_key: str = ""
    timeout: float = 30.0
    cache_ttl_seconds: float = 3600.0


class ChatConfig(BaseModel):
    """Orchestration loop configuration."""

    max_iterations: int = Field(default=10, ge=1)


class WebConfig(BaseModel):
    """Web server configuration."""

    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Stripe Chat."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="STRIPE_CHAT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Init kwargs carry YAML values; env vars override them key by key
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML, then fill credentials from legacy env vars."""
        config = cls.from_yaml(path)
        config.apply_legacy_env()
        return config

    def apply_legacy_env(self) -> None:
        """Fill empty settings from the plain env vars used by earlier deployments."""
        if not self.model.api_key:
            self.model.api_key = os.environ.get("DAT1_API_KEY", "")
        if not self.mcp.secret_key:
            self.mcp.secret_key = os.environ.get("STRIPE_SECRET_KEY", "")
        port = os.environ.get("PORT", "").strip()
        if port.isdigit() and "STRIPE_CHAT_WEB__PORT" not in os.environ:
            self.web.port = int(port)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
