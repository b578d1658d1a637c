"""
Provider Validation Module
Checks provider credentials on startup and reports which subsystems
will run in fallback or simulation mode
"""
import logging
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, asdict

from voicecaller.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    provider: str
    setting: str
    is_valid: bool
    message: str


class ProviderValidator:
    """
    Validates provider configurations at startup.

    Telephony credentials are required; speech and LLM providers
    are optional because each has a fallback path.
    """

    # (settings attribute, env var, description)
    REQUIRED_SETTINGS = {
        "telephony": [
            ("telnyx_api_key", "TELNYX_API_KEY", "Telnyx Call Control"),
            ("telnyx_connection_id", "TELNYX_CONNECTION_ID", "Telnyx connection"),
            ("telnyx_phone_number", "TELNYX_PHONE_NUMBER", "Telnyx caller ID"),
        ],
    }

    FALLBACK_SETTINGS = {
        "stt": [("deepgram_api_key", "DEEPGRAM_API_KEY", "Deepgram live transcription", "Telnyx native transcription")],
        "tts": [("elevenlabs_api_key", "ELEVENLABS_API_KEY", "ElevenLabs voice", "Telnyx built-in voice")],
        "llm": [("groq_api_key", "GROQ_API_KEY", "Groq LLM", "scripted fallback replies")],
    }

    def __init__(self, settings: Settings, strict: bool = False):
        """
        Args:
            settings: Application settings
            strict: If True, treat warnings as errors
        """
        self.settings = settings
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate all provider configurations.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []

        for provider, settings_list in self.REQUIRED_SETTINGS.items():
            for attr, env_var, description in settings_list:
                if getattr(self.settings, attr, None):
                    self._add_success(provider, env_var, f"{description} configured")
                elif self.strict:
                    self._add_error(provider, env_var, f"{description} requires {env_var} to be set")
                else:
                    self._add_warning(provider, env_var, f"{description} not configured (simulation mode)")

        for provider, settings_list in self.FALLBACK_SETTINGS.items():
            for attr, env_var, description, fallback in settings_list:
                if getattr(self.settings, attr, None):
                    self._add_success(provider, env_var, f"{description} configured")
                else:
                    self._add_warning(provider, env_var, f"{description} not configured ({fallback} will be used)")

        if self.settings.store_backend == "supabase":
            for attr, env_var in (("supabase_url", "SUPABASE_URL"), ("supabase_service_key", "SUPABASE_SERVICE_KEY")):
                if getattr(self.settings, attr, None):
                    self._add_success("database", env_var, "Supabase call store configured")
                else:
                    self._add_error("database", env_var, f"Supabase call store requires {env_var} to be set")

        errors = [r for r in self.results if not r.is_valid]
        return len(errors) == 0, self.results

    def _add_success(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(provider, setting, True, message))

    def _add_error(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(provider, setting, False, message))

    def _add_warning(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=not self.strict,  # Warnings become errors in strict mode
            message=f"WARNING: {message}"
        ))

    def log_results(self):
        """Log all validation results."""
        for r in self.results:
            if not r.is_valid:
                logger.error(f"  ✗ [{r.provider}] {r.message}")
            elif "WARNING" in r.message:
                logger.warning(f"  ⚠ [{r.provider}] {r.message}")
            else:
                logger.info(f"  ✓ [{r.provider}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Provider configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)

    def as_status(self) -> Dict[str, List[Dict]]:
        """Group results by provider for the config-status endpoint"""
        status: Dict[str, List[Dict]] = {}
        for r in self.results:
            status.setdefault(r.provider, []).append(asdict(r))
        return status


def validate_providers_on_startup(settings: Settings, strict: bool = False) -> None:
    """
    Validate all providers at startup.

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = ProviderValidator(settings, strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("Provider configuration validated")
