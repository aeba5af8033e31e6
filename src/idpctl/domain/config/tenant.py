"""Tenant configuration model."""

from typing import Optional

from pydantic import BaseModel


class TenantConfig(BaseModel):
    """Configuration for the tenant the management API calls go to.

    Attributes:
        domain: Tenant domain, e.g. "example.eu.auth0.com" (None = from IDPCTL_DOMAIN env)
        access_token: Management API access token (None = from IDPCTL_ACCESS_TOKEN env)
    """

    domain: Optional[str] = None
    access_token: Optional[str] = None
