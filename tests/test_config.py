import os

import pytest

from echoflow.core.config import load_settings


@pytest.fixture(autouse=True)
def test_environment(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "test")
    for key in (
        "UPSTREAM_BASE_URL",
        "UPSTREAM_API_KEY",
        "TRANSCRIPTION_MODEL",
        "POSTPROCESS_MODEL",
        "PORT",
        "MAX_UPLOAD_BYTES",
        "POSTPROCESS_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(key, raising=False)


def test_defaults(tmp_path):
    settings = load_settings(tmp_path / "missing.env")
    assert settings.port == 8080
    assert settings.upstream_base_url == "https://api.groq.com/openai/v1"
    assert settings.upstream_api_key == ""
    assert settings.transcription_model == "whisper-large-v3"
    assert settings.request_timeout_seconds == 25
    assert settings.max_upload_bytes == 25 * 1024 * 1024


def test_env_overrides_are_normalised(monkeypatch, tmp_path):
    monkeypatch.setenv("UPSTREAM_BASE_URL", " http://localhost:9000/v1/ ")
    monkeypatch.setenv("UPSTREAM_API_KEY", "  key  ")
    monkeypatch.setenv("PORT", "9090")
    settings = load_settings(tmp_path / "missing.env")
    assert settings.upstream_base_url == "http://localhost:9000/v1"
    assert settings.upstream_api_key == "key"
    assert settings.port == 9090


@pytest.mark.parametrize("key, value", [
    ("PORT", "eighty"),
    ("MAX_UPLOAD_BYTES", "0"),
    ("POSTPROCESS_TIMEOUT_SECONDS", "-1"),
])
def test_invalid_values_are_rejected(monkeypatch, tmp_path, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(RuntimeError, match="Invalid configuration"):
        load_settings(tmp_path / "missing.env")


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
    # load_dotenv writes into os.environ; keep that out of other tests
    monkeypatch.setattr(os, "environ", dict(os.environ))
    env_file = tmp_path / ".env"
    env_file.write_text("TRANSCRIPTION_MODEL=distil-whisper\nUPSTREAM_API_KEY=from-file\n")
    monkeypatch.setenv("UPSTREAM_API_KEY", "from-env")

    settings = load_settings(env_file)
    assert settings.transcription_model == "distil-whisper"
    # variables already set in the environment win over the file
    assert settings.upstream_api_key == "from-env"
