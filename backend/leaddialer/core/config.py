"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import yaml
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # API Settings
    host: str = "0.0.0.0"
    port: int = 8000
    api_prefix: str = "/api/v1"
    api_base_url: str = "http://localhost:8000"

    # Storage
    database_url: str = "sqlite:///./leaddialer.db"

    # Redis / lifecycle events
    redis_url: str = "redis://localhost:6379"
    events_channel: str = "dialer:calls:events"

    # Dispatcher
    concurrency_limit: int = 5
    tick_interval_seconds: float = 5.0
    ring_timeout_seconds: int = 30

    # Retry policy
    max_attempts: int = 3
    no_answer_delay_minutes: int = 30
    busy_delay_minutes: int = 15
    failed_delay_minutes: int = 30

    # Stuck-lead recovery
    stuck_threshold_seconds: int = 300
    max_call_duration_seconds: int = 3600
    recovery_interval_seconds: float = 60.0

    # Telephony
    telephony_provider: str = "simulated"
    caller_id: str = "+15550000000"
    vonage_application_id: Optional[str] = None
    vonage_private_key_path: str = "./config/private.key"
    connect_greeting: str = "Connecting you to our sales representative."


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: str = "development", config_dir: Optional[Path] = None):
        self.env = env
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("dialer.concurrency_limit") -> 5
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def flatten(self) -> Dict[str, Any]:
        """
        Flatten sections into Settings field names.

        Keys of the ``dialer``, ``retry``, ``recovery`` and ``telephony``
        sections map directly onto Settings fields; top-level scalars are
        passed through.
        """
        flat: Dict[str, Any] = {}
        for key, value in self._config.items():
            if isinstance(value, dict):
                flat.update(value)
            else:
                flat[key] = value
        return flat


def load_settings(env: Optional[str] = None, config_dir: Optional[Path] = None) -> Settings:
    """
    Build Settings with YAML values as defaults.

    Environment variables (and .env) win over YAML because pydantic-settings
    gives init kwargs precedence, so YAML keys that are also set in the
    environment are dropped before construction.
    """
    env = env or os.getenv("ENVIRONMENT", "development")
    yaml_values = ConfigManager(env, config_dir).flatten()
    overrides = {
        key: value
        for key, value in yaml_values.items()
        if key in Settings.model_fields and key.upper() not in os.environ
    }
    return Settings(**overrides)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings instance"""
    return load_settings()
