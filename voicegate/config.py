"""Configuration management for the voice biometric gateway."""

from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Server configuration
    port: int = 8000
    host: str = "0.0.0.0"
    public_base_url: str = "http://localhost:8000"

    # Session/challenge/lockout state
    store_backend: str = "redis"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "voicegate:"

    # Supabase configuration
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Twilio configuration
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    twilio_api_base: str = "https://api.twilio.com"

    # Verification policy
    match_threshold: float = 0.85
    lockout_threshold: int = 3
    session_ttl_seconds: int = 3600
    challenge_ttl_seconds: int = 120
    confirmation_ttl_seconds: int = 300
    lockout_ttl_seconds: int = 3600
    risk_timezone: str = "America/Lima"
    min_audio_duration: float = 1.0

    # Voice script
    company_name: str = "Redessip Perú"
    tts_voice: str = "Polly.Miguel"
    tts_language: str = "es-PE"

    # Logging and telemetry
    log_level: str = "INFO"
    otlp_endpoint: Optional[str] = None

    @field_validator('store_backend')
    @classmethod
    def validate_store_backend(cls, v):
        if v not in ("redis", "memory"):
            raise ValueError('STORE_BACKEND must be "redis" or "memory"')
        return v

    @field_validator('match_threshold')
    @classmethod
    def validate_match_threshold(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError('MATCH_THRESHOLD must be between 0.0 and 1.0')
        return v

    @field_validator('lockout_threshold')
    @classmethod
    def validate_lockout_threshold(cls, v):
        if v < 1:
            raise ValueError('LOCKOUT_THRESHOLD must be at least 1')
        return v

    @field_validator(
        'session_ttl_seconds',
        'challenge_ttl_seconds',
        'confirmation_ttl_seconds',
        'lockout_ttl_seconds'
    )
    @classmethod
    def validate_ttl(cls, v):
        if v <= 0:
            raise ValueError('TTL values must be positive')
        return v

    @field_validator('risk_timezone')
    @classmethod
    def validate_risk_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f'Unknown RISK_TIMEZONE: {v}')
        return v

    @field_validator('public_base_url')
    @classmethod
    def validate_public_base_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('PUBLIC_BASE_URL must be a valid HTTP/HTTPS URL')
        return v.rstrip('/')


# Global settings instance
settings = Settings()
