"""Main application configuration model."""

from pydantic import BaseModel, ConfigDict, Field

from idpctl.domain.config.tenant import TenantConfig
from idpctl.domain.config.transport import TransportConfig


class AppConfig(BaseModel):
    """Main application configuration.

    This is the root configuration model that aggregates all configuration sections.
    Validation is performed at load time to fail fast on configuration errors.

    Attributes:
        tenant: Tenant domain and credentials
        transport: Retry and rate-limit behaviour of the HTTP transport
    """

    tenant: TenantConfig = Field(default_factory=TenantConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)

    model_config = ConfigDict(
        validate_assignment=True,  # Validate on attribute assignment
        extra="forbid",  # Reject unknown fields
        json_schema_extra={
            "example": {
                "tenant": {
                    "domain": "example.eu.auth0.com",
                    "access_token": None,
                },
                "transport": {
                    "retryable_status_codes": [500, 502, 503, 504, 524],
                    "max_retries": 3,
                    "initial_delay": 0.5,
                    "max_delay": 10.0,
                    "rate_limit_fallback_delay": 5.0,
                    "rate_limit_reset_header": "X-RateLimit-Reset",
                },
            }
        },
    )
