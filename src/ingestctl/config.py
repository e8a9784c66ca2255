"""
Centralized configuration for ingestctl.

Uses Pydantic BaseSettings for environment variable integration
and validation.

Configuration sources (in order of precedence):
1. Explicit constructor arguments
2. Environment variables (INGESTCTL_*)
3. .env file
4. Default values

Example:
    from ingestctl.config import get_config

    config = get_config()
    print(config.registry_url)  # From INGESTCTL_REGISTRY_URL or default

    # Override at runtime
    config = get_config(state_dir="/tmp/ingestctl")
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IngestCtlConfig(BaseSettings):
    """
    Central configuration for ingestctl.

    All settings can be overridden via environment variables
    prefixed with INGESTCTL_.

    Example:
        export INGESTCTL_REGISTRY_URL=https://setup.staging.corco.ai
        export INGESTCTL_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="INGESTCTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Local persistence
    state_dir: str = Field(
        default="~/.ingestctl",
        description="Directory holding per-domain state records and the deployments registry",
    )
    terraform_dir: str = Field(
        default="./deployment/terraform",
        description="Terraform root module used for infrastructure deployment",
    )

    # Remote services
    registry_url: str = Field(
        default="https://setup.corco.ai",
        description="Base URL of the client registry (prefill, download, register)",
    )
    welcome_base_url: str = Field(
        default="https://us-central1-corco-prod.cloudfunctions.net",
        description="Base URL of the welcome message endpoints used during verification",
    )
    support_email: str = Field(
        default="support@corco.ai",
        description="Contact address shown when a run halts",
    )

    # Cloud defaults
    region: str = Field(
        default="us-central1",
        description="Region for functions, buckets and the Terraform state bucket",
    )
    bigquery_dataset: str = Field(
        default="corporate_context",
        description="BigQuery dataset created by Terraform",
    )
    bigquery_location: str = Field(
        default="EU",
        description="BigQuery dataset location",
    )
    tfstate_prefix: str = Field(
        default="ai-ingestion",
        description="Prefix of the Terraform GCS backend",
    )
    secret_prefix: str = Field(
        default="CORCO_",
        description="Prefix shared by every Secret Manager secret the product owns",
    )
    project_id_max_length: int = Field(
        default=30,
        ge=6,
        le=30,
        description="Maximum GCP project id length",
    )

    # Waits for eventually consistent systems
    iam_propagation_wait_s: float = Field(
        default=10.0,
        ge=0,
        description="Wait after IAM grants before verifying them",
    )
    org_policy_propagation_wait_s: float = Field(
        default=30.0,
        ge=0,
        description="Wait after an org policy change before re-checking it",
    )
    pipeline_wait_s: float = Field(
        default=120.0,
        ge=0,
        description="Wait before checking that test messages reached BigQuery",
    )

    # License enforcement
    license_grace_percent: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Grace band above the licensed user limit, in percent",
    )

    # HTTP
    http_timeout_s: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for registry and webhook HTTP calls",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for ingestctl",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format (json for log shipping, text for console)",
    )

    # Telemetry
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP gRPC endpoint for step traces; export is disabled when unset",
    )

    @field_validator("state_dir", "terraform_dir")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ and environment variables in paths."""
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("registry_url", "welcome_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("otlp_endpoint")
    @classmethod
    def validate_endpoint(cls, v: Optional[str]) -> Optional[str]:
        """Drop the protocol prefix; the gRPC exporter adds its own."""
        if not v:
            return None
        if v.startswith("http://"):
            v = v[7:]
        elif v.startswith("https://"):
            v = v[8:]
        return v

    def get_state_path(self) -> Path:
        return Path(self.state_dir)

    def get_terraform_path(self) -> Path:
        return Path(self.terraform_dir)


# Global singleton
_config: Optional[IngestCtlConfig] = None


def get_config(**overrides) -> IngestCtlConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        IngestCtlConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = IngestCtlConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
