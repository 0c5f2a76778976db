"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Stripe Configuration
    stripe_secret_key: str = Field(..., description="Stripe secret API key (sk_test_...)")
    stripe_webhook_secret: str = Field(..., description="Stripe webhook signing secret")

    # Jira Configuration
    jira_domain: str = Field(..., description="Jira site URL, e.g. https://acme.atlassian.net")
    jira_email: str = Field(..., description="Jira account email used for basic auth")
    jira_api_token: str = Field(..., description="Jira API token")
    jira_service_desk_key: Optional[str] = Field(
        default=None, description="Default service desk project key"
    )
    jira_service_desk_id: Optional[str] = Field(
        default=None, description="Default service desk numeric id"
    )
    jira_request_timeout_seconds: float = Field(
        default=15.0, description="Timeout for a single Jira API call (seconds)"
    )

    # Record shapes
    support_issue_type: str = Field(default="Service Request", description="Support issue type")
    support_request_type_id: Optional[str] = Field(
        default=None, description="Customer request type value for support records"
    )
    support_labels_enabled: bool = Field(
        default=True, description="Attach new/existing customer labels to support records"
    )
    source_label: str = Field(default="Stripe-Payment", description="Origin label")
    epic_issue_type: str = Field(default="Epic", description="Parent record issue type")
    parent_record_name: str = Field(default="New Client", description="Parent record name")
    confirmation_issue_type: str = Field(
        default="Service Request", description="Customer-facing confirmation issue type"
    )

    # Well-known custom field identifiers
    field_epic_name: str = Field(default="customfield_10011", description="Epic name field")
    field_epic_link: str = Field(default="customfield_10014", description="Epic link field")
    field_start_date: str = Field(default="customfield_10015", description="Start date field")
    field_request_type: str = Field(
        default="customfield_10010", description="Customer request type field"
    )

    # Identity resolution
    customer_search_attempts: int = Field(
        default=3, ge=1, description="Directory lookups after a customer already exists"
    )
    customer_search_delay_seconds: float = Field(
        default=1.5, ge=0, description="Constant delay between directory lookups (seconds)"
    )

    # Provisioning
    default_duration_days: int = Field(default=5, ge=0, le=3650, description="Default engagement length")
    dead_letter_capacity: int = Field(default=100, ge=1, description="Dead-letter buffer size")
    shutdown_grace_seconds: float = Field(
        default=10.0, description="Time allowed for in-flight runs on shutdown (seconds)"
    )

    # Application Configuration
    app_name: str = Field(default="checkout-provisioning", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("stripe_secret_key")
    @classmethod
    def validate_stripe_key(cls, v: str) -> str:
        """Validate the Stripe secret key prefix."""
        if not v.startswith("sk_test_") and not v.startswith("sk_live_"):
            raise ValueError(
                "Invalid Stripe secret key format. Must start with 'sk_test_' or 'sk_live_'"
            )
        return v

    @field_validator("jira_domain")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("jira_service_desk_key")
    @classmethod
    def upper_service_desk_key(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_test_mode(self) -> bool:
        """Check if using Stripe test mode."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
