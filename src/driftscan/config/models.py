"""Pydantic models for configuration schema."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class RetryConfig(BaseModel):
    """Backoff settings for transient provider failures."""

    max_attempts: int = Field(3, ge=1, le=10)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(30.0, ge=0)
    jitter: bool = True

    @model_validator(mode="after")
    def validate_delays(self):
        """Validate that the delay cap is not below the base delay."""
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self


class ProviderConfig(BaseModel):
    """Backend used to observe live resources."""

    type: str = Field("static", pattern="^(static|aws)$")
    path: Optional[str] = Field(None, description="Observed state file (static provider)")
    profile: Optional[str] = Field(None, description="AWS profile (aws provider)")
    discover: bool = Field(True, description="Report resources the provider finds but nobody declared")

    @model_validator(mode="after")
    def validate_provider_config(self):
        """Validate backend-specific fields."""
        if self.type == "static" and not self.path:
            raise ValueError("path is required for the static provider")
        return self


class EnvironmentConfig(BaseModel):
    """Environment-specific configuration."""

    name: str = Field(..., min_length=1, max_length=64, pattern="^[A-Za-z0-9_.-]+$")
    region: str = Field("global", min_length=1)
    declared: str = Field(..., min_length=1, description="Declared resource set location")
    state: Optional[str] = Field(None, description="Last applied snapshot location")
    provider: ProviderConfig = Field(default_factory=lambda: ProviderConfig(type="aws"))
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate region format (AWS and GCP style names)."""
        if not all(c.isalnum() or c == "-" for c in v):
            raise ValueError(f"Invalid region: {v}")
        return v.lower()


class ScannerConfig(BaseModel):
    """Scanner-wide settings."""

    max_workers: int = Field(4, ge=1, le=64, description="Environments scanned in parallel")
    fetch_concurrency: int = Field(
        8, ge=1, le=64, description="Concurrent provider calls per environment"
    )
    lock_dir: Optional[str] = Field(".driftscan/locks", description="Lock file directory")
    log_dir: Optional[str] = Field(None, description="JSON-lines log directory")
    ignore_fields: List[str] = Field(default_factory=list)
    strict: bool = Field(False, description="Also flag attributes only present in observed state")
    record_snapshots: bool = Field(
        False, description="Write the observed snapshot of clean environments"
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("ignore_fields")
    @classmethod
    def validate_ignore_fields(cls, v: List[str]) -> List[str]:
        """Validate ignored attribute names."""
        for name in v:
            if not name or not isinstance(name, str):
                raise ValueError(f"Ignored field must be a non-empty string: {name!r}")
        return v
