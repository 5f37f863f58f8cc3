"""Tests for TOML-backed configuration."""

from repolens import config_manager
from repolens.config_manager import ReviewSettings


class TestLLMConfig:
    def test_defaults_without_file(self):
        cfg = config_manager.load_config()

        assert cfg["provider"] == "ollama"
        assert cfg["model"] == config_manager.DEFAULT_CONFIGS["ollama"]["model"]

    def test_save_and_clear_keep_other_sections(self):
        config_manager._save_full_config({"review": {"workers": 3}})

        assert config_manager.save_config("openai", "gpt-4o-mini", "sk-1", "https://proxy.local/v1")
        assert config_manager.load_config()["endpoint"] == "https://proxy.local/v1"
        assert config_manager.load_full_config()["review"] == {"workers": 3}

        assert config_manager.clear_config()
        assert "llm" not in config_manager.load_full_config()
        assert config_manager.load_review_settings().workers == 3

    def test_generic_environment_key(self, monkeypatch):
        config_manager.save_config("anthropic", "claude", "stored")
        monkeypatch.setenv("REPOLENS_API_KEY", "from-env")

        assert config_manager.load_config()["api_key"] == "from-env"

    def test_broken_file_falls_back(self):
        config_manager.CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        config_manager.CONFIG_FILE.write_text("[llm\nprovider = ")

        assert config_manager.load_full_config() == {}
        assert config_manager.load_config()["provider"] == "ollama"

    def test_unknown_provider_defaults(self):
        assert config_manager.get_provider_config("nope")["provider"] == "ollama"


class TestReviewSettings:
    def test_defaults(self):
        settings = ReviewSettings()

        assert settings.workers >= 2
        assert settings.batch_timeout == 600.0
        assert settings.result_timeout == 30.0
        assert settings.tokens_per_minute == 60_000

    def test_from_mapping_coerces_and_skips_invalid(self):
        settings = ReviewSettings.from_mapping({
            "workers": "4",
            "batch_timeout": 90,
            "max_chars": "lots",
            "unknown": 1,
        })

        assert settings.workers == 4
        assert settings.batch_timeout == 90.0
        assert settings.max_chars == 32_000
