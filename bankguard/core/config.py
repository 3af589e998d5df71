"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# config.py is at: bankguard/core/config.py -> project root is two levels up
_current_file = Path(__file__).resolve()
_project_root = _current_file.parent.parent.parent
ENV_FILE = _project_root / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    """Application settings.

    Built once per process and passed to components at construction time.
    Instances are frozen; a test that needs different values builds its own
    ``Settings(...)`` instead of mutating the shared one.
    """

    # Application
    app_name: str = "BankGuard"
    app_env: str = Field(default="development", description="Application environment")
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_sqlalchemy: bool = Field(default=False, description="Enable SQLAlchemy query logging")
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"bankguard.services": "DEBUG"})'
    )
    log_format: str = Field(
        default="json",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_file_enabled: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(
        default="logs/bankguard.log",
        description="Path to log file (relative to project root)"
    )
    log_file_retention: int = Field(default=30, ge=1, description="Rotated log files to keep")
    log_sensitive_data: bool = Field(
        default=False,
        description="Log sensitive values unmasked (never enable in production)"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./bankguard.db",
        description="SQLAlchemy database URL"
    )
    database_pool_size: int = Field(default=5, ge=1, le=50, description="Connection pool size")
    database_max_overflow: int = Field(default=10, ge=0, le=100, description="Pool overflow")

    # Reasoning model
    llm_base_url: str = Field(default="http://localhost:11434", description="Ollama-compatible API URL")
    llm_model: str = Field(default="llama3", description="Reasoning model name")
    llm_temperature: float = Field(default=0.0, ge=0.0, le=1.0, description="Sampling temperature")
    llm_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Bounded wait for a single model request (seconds)"
    )

    # Embeddings
    embedding_provider: str = Field(
        default="hash",
        description="Embedding provider: 'hash' (deterministic feature hashing) or 'ollama'"
    )
    embedding_model: str = Field(default="nomic-embed-text", description="Embedding model name")
    embedding_dimension: int = Field(
        default=384,
        ge=8,
        le=4096,
        description="Fixed embedding dimension for the lifetime of the store"
    )

    # Pipeline
    query_permission: str = Field(default="AI_QUERY", description="Permission required to query")
    session_ttl_minutes: int = Field(default=30, ge=1, description="Conversation session TTL")
    fraud_flag_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Decision score at or above which a subject is flagged"
    )
    similarity_threshold: float = Field(
        default=0.7,
        gt=0.0,
        description="Maximum L2 distance (exclusive) for retrieved context"
    )
    similarity_top_k: int = Field(default=5, ge=1, le=100, description="Retrieved context size")
    compliance_allow_when_no_rules: bool = Field(
        default=True,
        description="Verdict when no compliance rule is active"
    )

    # Retention
    profile_retention_years: int = Field(default=5, ge=1, description="Customer profile retention")
    transaction_retention_years: int = Field(default=7, ge=1, description="Transaction retention")
    audit_retention_days: int = Field(default=365, ge=1, description="Audit record retention")

    # Background sweepers
    enable_background_sweepers: bool = Field(default=True, description="Run periodic sweeps")
    session_sweep_interval_seconds: int = Field(default=3600, ge=1, description="Session sweep period")
    retention_sweep_interval_seconds: int = Field(default=86400, ge=1, description="Retention sweep period")
    audit_sweep_interval_seconds: int = Field(default=86400, ge=1, description="Audit sweep period")

    # Audit writer
    audit_writer_workers: int = Field(default=2, ge=1, le=32, description="Audit writer threads")

    # Resilience
    breaker_failure_rate_threshold: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Failure rate in the sliding window that opens the circuit"
    )
    breaker_sliding_window_size: int = Field(default=10, ge=1, description="Calls in the sliding window")
    breaker_minimum_calls: int = Field(default=5, ge=1, description="Calls before the rate is evaluated")
    breaker_open_duration_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Cool-down before a half-open trial (seconds)"
    )
    retry_max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per model call")
    retry_backoff_seconds: float = Field(default=0.5, ge=0.0, description="Initial retry backoff")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff multiplier")

    # Tracing
    enable_tracing: bool = Field(default=False, description="Export OpenTelemetry spans to console")
    tracing_service_name: str = Field(default="bankguard", description="Service name for tracing")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v

    @field_validator("embedding_provider")
    @classmethod
    def validate_embedding_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in ("hash", "ollama"):
            raise ValueError("embedding_provider must be 'hash' or 'ollama'")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        frozen=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
