import pytest
from pydantic import ValidationError

import app.main as main
from app.config import ConfigError, load_settings

ENV_VARS = [
    "GEMINI_API_KEY",
    "PORT",
    "HOST",
    "CORS_ORIGIN",
    "GEMINI_MODEL",
    "UPSTREAM_BASE_URL",
    "UPSTREAM_TIMEOUT",
    "RATE_LIMIT_MAX",
    "RATE_LIMIT_WINDOW",
    "MAX_BODY_BYTES",
    "STATIC_DIR",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(main, "load_settings", lambda: load_settings(env_file=None))


def test_missing_api_key():
    with pytest.raises(ConfigError, match="GEMINI_API_KEY"):
        load_settings(env_file=None)


def test_defaults(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    settings = load_settings(env_file=None)

    assert settings.gemini_api_key == "secret"
    assert settings.port == 3001
    assert settings.cors_origins is None
    assert settings.upstream_timeout == 120.0
    assert settings.rate_limit_max == 30
    assert settings.rate_limit_window == 60.0
    assert settings.max_body_bytes == 12 * 1024 * 1024
    assert settings.model_url == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash-image-preview:generateContent"
    )


def test_overrides(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("CORS_ORIGIN", "https://a.example, https://b.example,")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-3-pro-image-preview")
    monkeypatch.setenv("UPSTREAM_BASE_URL", "http://localhost:9000/v1/")
    monkeypatch.setenv("UPSTREAM_TIMEOUT", "15.5")
    monkeypatch.setenv("RATE_LIMIT_MAX", "5")

    settings = load_settings(env_file=None)

    assert settings.port == 8080
    assert settings.cors_origins == ["https://a.example", "https://b.example"]
    assert settings.upstream_timeout == 15.5
    assert settings.rate_limit_max == 5
    assert settings.model_url == "http://localhost:9000/v1/models/gemini-3-pro-image-preview:generateContent"


def test_env_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("GEMINI_API_KEY=from-file\nPORT=4000\nUNRELATED=1\n", encoding="utf-8")

    settings = load_settings(env_file=str(env_file))

    assert settings.gemini_api_key == "from-file"
    assert settings.port == 4000


def test_blank_cors_origin_allows_any(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    monkeypatch.setenv("CORS_ORIGIN", " , ")
    assert load_settings(env_file=None).cors_origins is None


def test_malformed_value(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    monkeypatch.setenv("PORT", "abc")
    with pytest.raises(ValidationError):
        load_settings(env_file=None)


def test_run_exits_without_api_key():
    with pytest.raises(SystemExit) as excinfo:
        main.run()
    assert excinfo.value.code == 1


def test_run_exits_on_malformed_value(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    monkeypatch.setenv("PORT", "abc")
    with pytest.raises(SystemExit) as excinfo:
        main.run()
    assert excinfo.value.code == 1
