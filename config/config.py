"""Configuration management for the application."""

import os
import yaml
from pathlib import Path
from typing import Optional, Any, List
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv


# Load environment variables from .env file
load_dotenv()


NOTIFIED_STORAGE_KEY = "zncrm_notified_appointments"


class EnvSettings(BaseSettings):
    """Process-level overrides read from ZNCRM_* environment variables."""
    model_config = SettingsConfigDict(env_prefix="ZNCRM_", extra="ignore")

    config_path: Optional[Path] = Field(default=None, description="Path of the YAML config file")
    log_level: Optional[str] = Field(default=None, description="Overrides logging.level")


class SupabaseConfig(BaseModel):
    """Backend (Supabase) connection configuration."""
    url: str = Field(description="Supabase project URL")
    anon_key: str = Field(description="Supabase anon/publishable API key")
    service_access_token: Optional[str] = Field(
        default=None,
        description="Access token used by background jobs (reminders) for row-level security"
    )
    media_bucket: str = Field(default="media", description="Storage bucket for car photos")
    timeout_seconds: float = Field(default=30.0, description="HTTP timeout for backend calls")

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class RemindersConfig(BaseModel):
    """Appointment reminder configuration."""
    enabled: bool = Field(default=True, description="Whether reminders are enabled")
    check_interval_seconds: int = Field(default=60, description="Interval between appointment polls")
    window_minutes: int = Field(default=15, description="Remind this many minutes before an appointment")
    fallback_title: str = Field(default="Afspraak", description="Title used for untitled appointments")
    permission: str = Field(
        default="default",
        description="Initial notification permission: default, granted or denied"
    )
    grant_on_request: bool = Field(
        default=True,
        description="Outcome of a permission request made from the default state"
    )

    @field_validator("permission")
    @classmethod
    def check_permission(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("default", "granted", "denied"):
            raise ValueError(f"permission must be default, granted or denied, got '{value}'")
        return value


class StorageConfig(BaseModel):
    """Local per-profile state storage."""
    backend: str = Field(default="file", description="Storage backend: file or memory")
    path: str = Field(default="~/.zncrm/state.json", description="Path of the profile state file")
    notified_key: str = Field(default=NOTIFIED_STORAGE_KEY, description="Key of the notified-set")


class ApiConfig(BaseModel):
    """HTTP API configuration."""
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8000, description="Bind port")
    require_auth: bool = Field(default=True, description="Require a bearer token on CRM routes")


class TerminalConfig(BaseModel):
    """Terminal UI configuration."""
    prompt: str = Field(default="CRM> ", description="User input prompt")
    show_timestamps: bool = Field(default=True, description="Whether to show timestamps")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="%(message)s", description="Log message format")
    date_format: str = Field(default="%Y-%m-%d %H:%M:%S", description="Date format for logs")


class AppConfig(BaseModel):
    """Application configuration."""
    supabase: SupabaseConfig
    reminders: RemindersConfig = Field(default_factory=RemindersConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in configuration data.

    Supports ${VAR} and ${VAR:default} syntax.
    """
    if isinstance(data, dict):
        return {key: expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        # Handle ${VAR:default} syntax
        if data.startswith("${") and data.endswith("}"):
            var_part = data[2:-1]
            if ":" in var_part:
                var_name, default_value = var_part.split(":", 1)
                return os.getenv(var_name, default_value)
            else:
                var_name = var_part
                return os.getenv(var_name, data)
        return data
    else:
        return data


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to config YAML file. Defaults to $ZNCRM_CONFIG_PATH,
            then config/config.yaml

    Returns:
        AppConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If configuration is invalid
    """
    env = EnvSettings()

    if config_path is None:
        # Default to config/config.yaml (same directory as this file)
        config_path = env.config_path or Path(__file__).parent / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    # Load YAML file
    with open(config_path, 'r', encoding='utf-8') as f:
        config_data = yaml.safe_load(f) or {}

    # Expand environment variables
    config_data = expand_env_vars(config_data)
    if env.log_level:
        config_data.setdefault("logging", {})["level"] = env.log_level

    # Validate and create config object
    try:
        config = AppConfig(**config_data)
        return config
    except Exception as e:
        raise ValueError(f"Invalid configuration: {e}")


def validate_config(config: AppConfig) -> List[str]:
    """Validate that all required configuration values are present and valid.

    Args:
        config: Application configuration

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not config.supabase.url.startswith(("http://", "https://")):
        errors.append(f"SUPABASE_URL is not a valid URL: {config.supabase.url}")

    if not config.supabase.anon_key or config.supabase.anon_key == "your_supabase_anon_key_here":
        errors.append("SUPABASE_ANON_KEY is not set or is using default value")

    if config.reminders.check_interval_seconds <= 0:
        errors.append("reminders.check_interval_seconds must be positive")

    if config.reminders.window_minutes < 0:
        errors.append("reminders.window_minutes must not be negative")

    if config.storage.backend not in ("file", "memory"):
        errors.append(f"Unknown storage backend: {config.storage.backend}")

    return errors


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance.

    Returns:
        AppConfig: Global configuration

    Raises:
        RuntimeError: If configuration hasn't been loaded
    """
    global _config
    if _config is None:
        raise RuntimeError("Configuration not loaded. Call load_config() first.")
    return _config


def init_config(config_path: Optional[Path] = None) -> AppConfig:
    """Initialize the global configuration.

    Args:
        config_path: Path to config file (optional)

    Returns:
        AppConfig: Loaded configuration
    """
    global _config
    _config = load_config(config_path)
    return _config
