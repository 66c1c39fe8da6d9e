"""
tests/test_settings.py — Unit tests for environment-driven Settings.
"""
import pytest

from Config import DEFAULT_GROQ_MODEL, Settings

_VARS = (
    "GROQ_API_KEY",
    "GROQ_MODEL",
    "GROQ_API_URL",
    "FLOWSCOUT_LLM_TIMEOUT",
    "PORT",
    "FLOWSCOUT_HEADLESS",
    "FLOWSCOUT_CONCURRENCY",
    "FLOWSCOUT_STATIC_TIMEOUT",
    "FLOWSCOUT_DYNAMIC_TIMEOUT",
    "FLOWSCOUT_STEP_TIMEOUT",
)


@pytest.fixture
def env(monkeypatch, tmp_path):
    for name in _VARS:
        # register every variable so values loaded from .env are undone too
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    # keep a stray .env in the working directory out of the picture
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def load(tmp_path) -> Settings:
    return Settings.from_env(dotenv_path=str(tmp_path / ".env"))


class TestDefaults:
    def test_without_environment(self, env, tmp_path):
        settings = load(tmp_path)
        assert settings == Settings()
        assert not settings.has_llm
        assert settings.groq_model == DEFAULT_GROQ_MODEL
        assert settings.port == 5001


class TestFromEnv:
    def test_values_read(self, env, tmp_path):
        env.setenv("GROQ_API_KEY", "secret")
        env.setenv("PORT", "8080")
        env.setenv("FLOWSCOUT_HEADLESS", "false")
        env.setenv("FLOWSCOUT_STEP_TIMEOUT", "2.5")
        settings = load(tmp_path)
        assert settings.has_llm
        assert settings.port == 8080
        assert settings.headless is False
        assert settings.step_timeout == 2.5

    def test_invalid_number_falls_back(self, env, tmp_path):
        env.setenv("PORT", "eighty")
        env.setenv("FLOWSCOUT_STATIC_TIMEOUT", "soon")
        settings = load(tmp_path)
        assert settings.port == 5001
        assert settings.static_timeout == 8.0

    def test_concurrency_at_least_one(self, env, tmp_path):
        env.setenv("FLOWSCOUT_CONCURRENCY", "0")
        assert load(tmp_path).concurrency == 1

    def test_empty_key_means_no_llm(self, env, tmp_path):
        env.setenv("GROQ_API_KEY", "")
        assert not load(tmp_path).has_llm

    def test_dotenv_file_read(self, env, tmp_path):
        (tmp_path / ".env").write_text("GROQ_MODEL=custom-model\n")
        assert load(tmp_path).groq_model == "custom-model"

    def test_real_environment_wins_over_dotenv(self, env, tmp_path):
        env.setenv("GROQ_MODEL", "from-env")
        (tmp_path / ".env").write_text("GROQ_MODEL=from-file\n")
        assert load(tmp_path).groq_model == "from-env"
