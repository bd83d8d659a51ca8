"""Configuration management for Vault Agent."""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from vault_agent.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.vault-agent/config.yaml").expanduser()
DEFAULT_DB_PATH = Path("~/.vault-agent/history.db").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class ModelConfig(BaseModel):
    """Model configuration."""

    provider: str = "ollama"
    model: str = "llama3.2"
    temperature: float = 0.7
    max_tokens: int = 4096
    api_key: str = ""
    base_url: str = ""


class AgentConfig(BaseModel):
    """Agent-mode limits handed to a response handler at construction.

    Frozen: a handler replaces its copy through its own setters instead of
    mutating a shared settings object.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    max_tool_calls: int = Field(default=10, ge=0)
    timeout_ms: int = Field(default=30000, gt=0)
    max_iterations: int = Field(default=10, ge=0)
    enabled_tools: list[str] | None = None
    custom_system_message: str = ""

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class VaultConfig(BaseModel):
    """Vault (notes directory) configuration."""

    path: str = "./vault"
    trash_dir: str = ".trash"


class SessionConfig(BaseModel):
    """History storage configuration."""

    storage: str = "sqlite"
    path: str = str(DEFAULT_DB_PATH)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Vault Agent."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    agent_mode: AgentConfig = Field(default_factory=AgentConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="VAULT_AGENT_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError if the file is not valid YAML or fails validation
        """
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from YAML; env vars are applied by pydantic-settings."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_vault_path(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve vault path, anchoring relative paths to runtime base/cwd."""
        raw = Path(self.vault.path).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()


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
