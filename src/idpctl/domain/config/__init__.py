"""Configuration models with Pydantic validation."""

from idpctl.domain.config.app import AppConfig
from idpctl.domain.config.tenant import TenantConfig
from idpctl.domain.config.transport import DEFAULT_RETRYABLE_STATUS_CODES, TransportConfig

__all__ = [
    "AppConfig",
    "TenantConfig",
    "TransportConfig",
    "DEFAULT_RETRYABLE_STATUS_CODES",
]
