"""
Configuration Management
Loads settings from environment variables and YAML provider files
"""
import yaml
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    debug: bool = True

    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]
    public_base_url: str = "http://localhost:8000"

    # Telnyx Call Control
    telnyx_api_key: Optional[str] = None
    telnyx_connection_id: Optional[str] = None
    telnyx_phone_number: Optional[str] = None
    telnyx_api_base: str = "https://api.telnyx.com/v2"

    # Speech + LLM providers
    deepgram_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    cartesia_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None

    # Call Record Store
    store_backend: str = "memory"  # memory | supabase
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # Network budgets (seconds)
    telephony_playback_timeout: float = 10.0
    telephony_speak_timeout: float = 8.0
    synthesis_timeout: float = 10.0
    llm_timeout: float = 8.0
    recognition_connect_timeout: float = 5.0

    # Conversation pacing (seconds)
    answer_delay: float = 0.5
    listen_delay: float = 0.2
    silence_timeout: float = 8.0
    max_consecutive_silences: int = 3
    max_conversation_turns: int = 8
    history_window: int = 6
    min_transcript_length: int = 3

    # Background reconciler
    progress_sweep_interval: float = 5.0
    analysis_sweep_interval: float = 10.0
    progress_batch_size: int = 3
    analysis_batch_size: int = 2
    stale_after_seconds: int = 30
    max_call_duration_seconds: int = 600

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def webhook_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}{self.api_prefix}/webhooks/telnyx"

    @property
    def audio_stream_url(self) -> str:
        base = self.public_base_url.rstrip('/').replace("https://", "wss://").replace("http://", "ws://")
        return f"{base}{self.api_prefix}/calls/audio-stream/ws"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()


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

        # Environment-specific overrides
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
                config[key] = os.getenv(env_var) or None

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
        Example: config.get("providers.tts.active") -> "elevenlabs"
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_active_provider(self, provider_type: str) -> Optional[str]:
        return self.get(f"providers.{provider_type}.active")

    def get_provider_config(self, provider_type: str, name: Optional[str] = None) -> Dict:
        """Get configuration block for a provider (active one by default)"""
        name = name or self.get_active_provider(provider_type)
        if not name:
            raise ValueError(f"No active {provider_type} provider configured")

        return dict(self.get(f"providers.{provider_type}.{name}", {}) or {})

    def get_agent_persona(self) -> Dict:
        return dict(self.get("agent", {}) or {})


@lru_cache()
def get_config_manager() -> ConfigManager:
    return ConfigManager(env=get_settings().environment)
