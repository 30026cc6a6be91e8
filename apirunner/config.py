"""
Configuration management module using Pydantic Settings.

This module provides type-safe configuration management with environment variable
support and validation for the APIRunner engine.
"""

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SystemCredentials(BaseModel):
    """Credentials used to authenticate against a system."""

    username: Optional[str] = None
    password: Optional[str] = None
    clientid: Optional[str] = None
    secret: Optional[str] = None
    token: Optional[str] = None


class SystemConfig(BaseModel):
    """A target system the endpoints can be executed against."""

    api_url: str = Field(..., description="Base URL prefixed to every endpoint url")
    type: str = Field(default="none", description="Authentication type (basic, oauth2, bearer, none)")
    oauth_url: Optional[str] = Field(default=None, description="Token endpoint for OAuth2 systems")
    credentials: SystemCredentials = Field(default_factory=SystemCredentials)
    variables: Dict[str, Any] = Field(
        default_factory=dict,
        description="Variables merged into the scope of every endpoint run on this system"
    )
    language: str = Field(default="en", description="Accept-Language sent with requests")


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be overridden via environment variables with the same name.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Workspace layout
    workspace: str = Field(
        default=".",
        description="Root directory holding the tests directory, jobs and cache"
    )
    tests_directory: str = Field(
        default="tests",
        description="Directory inside the workspace with scenarios, payloads and schemas"
    )
    db_path: str = Field(
        default=".apirunner/apirunner.db",
        description="SQLite database for job history and the response cache"
    )
    datasets_file: Optional[str] = Field(
        default=None,
        description="Optional JSON file with extra named datasets for {dataset.<name>}"
    )

    # Execution settings
    max_parallel_executors: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Maximum number of simultaneously in-flight network calls"
    )
    throttle_poll_interval: float = Field(
        default=0.3,
        gt=0.0,
        le=10.0,
        description="Seconds between polls while waiting for a free executor slot"
    )
    repeat_until_timeout_ms: int = Field(
        default=2 * 60 * 1000,
        ge=0,
        description="Default timeout for repeat-until loops in milliseconds"
    )
    script_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=600.0,
        description="Timeout in seconds for a single lifecycle script"
    )
    script_workers: int = Field(
        default=64,
        ge=1,
        le=1024,
        description="Maximum number of threads running lifecycle scripts at once"
    )

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: Literal["structured", "simple"] = Field(
        default="simple",
        description="Log format type"
    )
    sanitize_logs: bool = Field(
        default=True,
        description="Sanitize sensitive information from logs"
    )

    # HTTP Client Settings
    http_timeout: int = Field(
        default=30,
        ge=1,
        le=600,
        description="HTTP client timeout in seconds"
    )
    verify_ssl: bool = Field(
        default=False,
        description="Verify TLS certificates of the systems under test"
    )

    # Systems and variables
    systems: Dict[str, SystemConfig] = Field(
        default_factory=dict,
        description="Named systems endpoints can be executed against"
    )
    default_system: Optional[str] = Field(
        default=None,
        description="System used when an endpoint does not name one"
    )
    env_vars: Dict[str, Any] = Field(
        default_factory=dict,
        description="Variables made available to every scenario of a job"
    )

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """Ensure database path is normalized."""
        return os.path.normpath(v)

    @field_validator("default_system")
    @classmethod
    def validate_default_system(cls, v: Optional[str], info) -> Optional[str]:
        """Ensure the default system is one of the configured systems."""
        systems = info.data.get("systems") or {}
        if v and systems and v not in systems:
            raise ValueError(f"Default system '{v}' is not defined in systems ({', '.join(systems)})")
        return v

    @property
    def tests_path(self) -> Path:
        return Path(self.workspace) / self.tests_directory

    @property
    def scenarios_dir(self) -> Path:
        return self.tests_path / "scenarios"

    @property
    def payloads_dir(self) -> Path:
        return self.tests_path / "payloads"

    @property
    def schemas_dir(self) -> Path:
        return self.tests_path / "schemas"

    @property
    def cache_dir(self) -> Path:
        return Path(self.workspace) / ".cache"

    @property
    def frozen_scenarios_file(self) -> Path:
        return self.cache_dir / "scenarios.json"


# Global settings instance
settings = Settings()
