"""
Basic Tests for Core Functionality
Tests provider validation, YAML config loading, phone numbers and service wiring
"""
from pathlib import Path

import pytest

from voicecaller.core.config import ConfigManager, Settings
from voicecaller.core.container import build_services, build_store
from voicecaller.core.validation import ProviderValidator, validate_providers_on_startup
from voicecaller.infrastructure.storage.memory_call_store import InMemoryCallStore
from voicecaller.utils.phone import is_valid_phone_number, normalize_phone_number

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"

PROVIDER_ENV_VARS = ["DEEPGRAM_API_KEY", "ELEVENLABS_API_KEY", "CARTESIA_API_KEY", "GROQ_API_KEY"]


@pytest.fixture
def bare_env(monkeypatch):
    for var in PROVIDER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestProviderValidation:
    """Tests for provider configuration validation."""

    def test_missing_telephony_is_warning_outside_strict(self):
        validator = ProviderValidator(settings())

        all_valid, results = validator.validate_all()

        assert all_valid is True
        assert any("simulation mode" in r.message for r in results)

    def test_strict_mode_requires_telephony(self):
        validator = ProviderValidator(settings(), strict=True)

        all_valid, _ = validator.validate_all()

        assert all_valid is False
        assert "TELNYX_API_KEY" in validator.get_error_summary()

    def test_configured_providers(self):
        validator = ProviderValidator(settings(
            telnyx_api_key="KEY",
            telnyx_connection_id="conn",
            telnyx_phone_number="+15550001111",
            deepgram_api_key="dg",
            elevenlabs_api_key="el",
            groq_api_key="gq",
        ), strict=True)

        all_valid, results = validator.validate_all()

        assert all_valid is True
        assert all("WARNING" not in r.message for r in results)

    def test_supabase_store_needs_credentials(self):
        with pytest.raises(RuntimeError):
            validate_providers_on_startup(settings(store_backend="supabase"))

    def test_status_grouped_by_provider(self):
        validator = ProviderValidator(settings())
        validator.validate_all()

        status = validator.as_status()

        assert set(status) == {"telephony", "stt", "tts", "llm"}


class TestConfigManager:

    def test_env_substitution_and_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_GROQ_KEY", "secret")
        (tmp_path / "default.yaml").write_text(
            "providers:\n"
            "  llm:\n"
            "    active: groq\n"
            "    groq:\n"
            "      api_key: ${TEST_GROQ_KEY}\n"
            "      model: small\n"
            "      temperature: 0.5\n"
        )
        (tmp_path / "production.yaml").write_text(
            "providers:\n"
            "  llm:\n"
            "    groq:\n"
            "      model: large\n"
        )

        config = ConfigManager(env="production", config_dir=tmp_path)

        groq = config.get_provider_config("llm")
        assert groq == {"api_key": "secret", "model": "large", "temperature": 0.5}

    def test_unset_variable_becomes_none(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_MISSING_KEY", raising=False)
        (tmp_path / "default.yaml").write_text("providers:\n  stt:\n    active: x\n    x:\n      api_key: ${TEST_MISSING_KEY}\n")

        config = ConfigManager(config_dir=tmp_path)

        assert config.get("providers.stt.x.api_key") is None

    def test_missing_active_provider(self, tmp_path):
        config = ConfigManager(config_dir=tmp_path)

        with pytest.raises(ValueError):
            config.get_provider_config("tts")
        assert config.get("agent.name", "Mike") == "Mike"

    def test_shipped_defaults(self):
        config = ConfigManager(env="test", config_dir=CONFIG_DIR)

        assert config.get_active_provider("stt") == "deepgram"
        assert config.get_provider_config("tts", "telnyx-voice")["voice"] == "male"
        assert config.get_agent_persona()["company"] == "WebCraft Solutions"


class TestPhoneNumbers:

    @pytest.mark.parametrize("raw,expected", [
        ("(555) 123-4567", "+15551234567"),
        ("555.123.4567", "+15551234567"),
        ("+44 20 7946 0958", "+442079460958"),
        ("442079460958", "+442079460958"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_phone_number(raw) == expected

    @pytest.mark.parametrize("raw,valid", [
        ("+15551234567", True),
        ("555-123-4567", True),
        ("12", False),
        ("+0123456789", False),
        ("call me", False),
    ])
    def test_validate(self, raw, valid):
        assert is_valid_phone_number(raw) is valid


class TestServiceWiring:

    def test_memory_store_by_default(self):
        assert isinstance(build_store(settings()), InMemoryCallStore)

    def test_supabase_store_without_credentials(self):
        with pytest.raises(RuntimeError):
            build_store(settings(store_backend="supabase"))

    @pytest.mark.asyncio
    async def test_build_without_credentials(self, bare_env):
        """No keys: simulated telephony, native transcription, built-in voice, scripted replies"""
        services = await build_services(settings(), ConfigManager(env="test", config_dir=CONFIG_DIR))

        try:
            assert services.telephony.simulated is True
            assert services.stt is None
            assert services.stt_fallback.name == "telnyx-native"
            assert services.tts is None
            assert services.llm is None
            assert services.recognition.fallback_name == "telnyx-native"
            assert services.reconciler.running is False
        finally:
            await services.shutdown()

    @pytest.mark.asyncio
    async def test_simulated_call_can_be_placed(self, bare_env):
        services = await build_services(settings(), ConfigManager(env="test", config_dir=CONFIG_DIR))

        try:
            call = await services.orchestrator.initiate_call("+15551234567", "Sam")
            assert call.provider_call_id.startswith("sim-")
        finally:
            await services.shutdown()
