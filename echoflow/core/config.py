from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator


def _env(key: str, default: str = "") -> str:
	value = os.getenv(key, "").strip()
	return value or default


def _env_int(key: str, default: int) -> int:
	return int(_env(key, str(default)))


class AppSettings(BaseModel):
	environment: str = Field(default_factory=lambda: _env("ENVIRONMENT", "development"))
	log_level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))

	# Listener
	host: str = Field(default_factory=lambda: _env("HOST", "0.0.0.0"))
	port: int = Field(default_factory=lambda: _env_int("PORT", 8080))

	# Upstream (OpenAI-compatible). An empty key means callers must bring their own token.
	upstream_base_url: str = Field(default_factory=lambda: _env("UPSTREAM_BASE_URL", "https://api.groq.com/openai/v1"))
	upstream_api_key: str = Field(default_factory=lambda: _env("UPSTREAM_API_KEY"))

	# Default models
	transcription_model: str = Field(default_factory=lambda: _env("TRANSCRIPTION_MODEL", "whisper-large-v3"))
	postprocess_model: str = Field(default_factory=lambda: _env("POSTPROCESS_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct"))

	# Timeouts (seconds) and limits
	request_timeout_seconds: int = Field(default_factory=lambda: _env_int("REQUEST_TIMEOUT_SECONDS", 25))
	transcription_timeout_seconds: int = Field(default_factory=lambda: _env_int("TRANSCRIPTION_TIMEOUT_SECONDS", 20))
	postprocess_timeout_seconds: int = Field(default_factory=lambda: _env_int("POSTPROCESS_TIMEOUT_SECONDS", 20))
	max_upload_bytes: int = Field(default_factory=lambda: _env_int("MAX_UPLOAD_BYTES", 25 * 1024 * 1024))

	@field_validator("upstream_base_url")
	@classmethod
	def _strip_trailing_slash(cls, v: str) -> str:
		v = v.strip().rstrip("/")
		if not v:
			raise ValueError("UPSTREAM_BASE_URL must not be empty")
		return v

	@field_validator("upstream_api_key")
	@classmethod
	def _trim_key(cls, v: str) -> str:
		return v.strip()

	@field_validator("transcription_model", "postprocess_model")
	@classmethod
	def _require_model(cls, v: str) -> str:
		v = v.strip()
		if not v:
			raise ValueError("model name must not be empty")
		return v

	@field_validator(
		"request_timeout_seconds",
		"transcription_timeout_seconds",
		"postprocess_timeout_seconds",
		"max_upload_bytes",
	)
	@classmethod
	def _require_positive(cls, v: int) -> int:
		if v <= 0:
			raise ValueError("must be > 0")
		return v


_cached_settings: Optional[AppSettings] = None


def load_settings(dotenv_path: Optional[str | Path] = None) -> AppSettings:
	"""
	Load environment variables and return validated settings with sensible defaults.

	Precedence: passed dotenv_path (if provided) → .env in CWD (if exists) → OS env.
	"""
	global _cached_settings
	# In test environment, always reload settings to honor env overrides set by tests
	if os.getenv("ENVIRONMENT", "").lower() != "test":
		if _cached_settings is not None:
			return _cached_settings

	if dotenv_path is not None:
		load_dotenv(dotenv_path)
	else:
		default_env = Path(".env")
		if default_env.exists():
			load_dotenv(default_env)

	try:
		settings = AppSettings()
	except (ValidationError, ValueError) as e:
		raise RuntimeError(f"Invalid configuration: {e}") from e

	if settings.environment.lower() != "test":
		_cached_settings = settings
	return settings


def get_settings() -> AppSettings:
	return load_settings()
