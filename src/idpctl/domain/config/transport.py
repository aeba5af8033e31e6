"""HTTP transport configuration model."""

from typing import FrozenSet

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# 524 is a CDN-specific code: the edge got no HTTP response from the origin
# after the connection was made.
DEFAULT_RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({503, 500, 502, 504, 524})


class TransportConfig(BaseModel):
    """Configuration for the resilient management API transport.

    Attributes:
        retryable_status_codes: Response codes treated as transient server failures
        max_retries: Retries after the first attempt on server errors (3 = 4 calls total)
        initial_delay: Base backoff delay in seconds
        max_delay: Backoff cap in seconds
        rate_limit_fallback_delay: Delay on 429 when the reset header is unusable
        rate_limit_reset_header: Response header holding the reset Unix timestamp
    """

    retryable_status_codes: FrozenSet[int] = DEFAULT_RETRYABLE_STATUS_CODES
    max_retries: int = Field(3, ge=0, le=10)
    initial_delay: float = Field(0.5, ge=0.0)  # Allow 0 for tests
    max_delay: float = Field(10.0, ge=0.0)
    rate_limit_fallback_delay: float = Field(5.0, ge=0.0)
    rate_limit_reset_header: str = Field("X-RateLimit-Reset", min_length=1)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("retryable_status_codes")
    @classmethod
    def _check_status_codes(cls, value: FrozenSet[int]) -> FrozenSet[int]:
        invalid = sorted(code for code in value if not 100 <= code <= 599)
        if invalid:
            raise ValueError(f"not HTTP status codes: {invalid}")
        if 429 in value:
            raise ValueError("429 is handled by the rate-limit transport")
        return value

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "TransportConfig":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be greater than or equal to initial_delay")
        return self
