"""Management API client"""

import base64
import json
import logging
from typing import Any, Dict, Optional

import requests

from idpctl import buildinfo
from idpctl.domain.config.transport import TransportConfig
from idpctl.infrastructure.http_client import session_with_retries

logger = logging.getLogger(__name__)


class ManagementAPIError(Exception):
    """Non-2xx response from the management API"""

    def __init__(self, status_code: int, error: str = "", message: str = ""):
        self.status_code = status_code
        self.error = error
        self.message = message
        text = f"{status_code} {error}".strip()
        super().__init__(f"{text}: {message}" if message else text)

    @classmethod
    def from_response(cls, response: requests.Response) -> "ManagementAPIError":
        """Build from the JSON error body ({"statusCode", "error", "message"})"""
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            return cls(response.status_code, response.reason or "", response.text.strip())
        try:
            status_code = int(body.get("statusCode", response.status_code))
        except (TypeError, ValueError):
            status_code = response.status_code
        return cls(
            status_code,
            str(body.get("error", response.reason or "")),
            str(body.get("message", "")),
        )


def client_info_header() -> str:
    """Encode the client telemetry header sent with every request"""
    payload = {
        "name": buildinfo.CLIENT_NAME,
        "version": buildinfo.__version__.lstrip("v"),
        "env": buildinfo.runtime_env(),
    }
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


class ManagementClient:
    """Client for management API operations

    All traffic goes through the rate-limit and retryable-error transports;
    nothing above them retries.
    """

    def __init__(
        self,
        domain: Optional[str],
        access_token: Optional[str],
        transport_config: Optional[TransportConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize management client

        Args:
            domain: Tenant domain, e.g. "example.eu.auth0.com"
            access_token: Management API access token
            transport_config: Retry constants for the transport chain
            session: Pre-built session (default: session_with_retries(transport_config))

        Raises:
            ValueError: If domain or access token is missing
        """
        if not domain:
            raise ValueError(
                "Tenant domain is required. "
                "Set IDPCTL_DOMAIN environment variable or provide in config."
            )
        if not access_token:
            raise ValueError(
                "Access token is required. "
                "Set IDPCTL_ACCESS_TOKEN environment variable or provide in config."
            )

        self.domain = domain.strip().rstrip("/")
        if "://" in self.domain:
            self.domain = self.domain.split("://", 1)[1]
        self.base_url = f"https://{self.domain}/api/v2/"
        self.session = session or session_with_retries(transport_config)
        self.session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "User-Agent": buildinfo.user_agent(),
                "Auth0-Client": client_info_header(),
            }
        )

        logger.debug(f"Management client initialized for {self.domain}")

    def url(self, uri: str) -> str:
        """Absolute endpoint URL for a path relative to /api/v2/"""
        return self.base_url + uri.strip("/")

    def new_request(
        self,
        method: str,
        uri: str,
        payload: Any = None,
        params: Optional[Dict[str, str]] = None,
    ) -> requests.PreparedRequest:
        """Build a request; a payload that is not None is encoded as JSON

        Args:
            method: HTTP method
            uri: Path relative to /api/v2/ or an absolute URL
            payload: JSON-serializable body
            params: Query parameters

        Returns:
            Prepared request carrying the session's default headers
        """
        url = uri if uri.startswith(("http://", "https://")) else self.url(uri)
        data = None if payload is None else json.dumps(payload)
        request = requests.Request(method.upper(), url, data=data, params=params or None)
        return self.session.prepare_request(request)

    def do(self, request: requests.PreparedRequest, timeout: Optional[float] = None) -> requests.Response:
        """Send a prepared request through the retrying transport chain"""
        logger.debug(f"[{request.method}]: {request.url}")
        return self.session.send(request, timeout=timeout)

    def request(
        self,
        method: str,
        uri: str,
        payload: Any = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Send a request and decode its JSON body

        Returns:
            Decoded body, or None for an empty body

        Raises:
            ManagementAPIError: If the response status is not 2xx
        """
        response = self.do(self.new_request(method, uri, payload=payload, params=params))
        if not response.ok:
            raise ManagementAPIError.from_response(response)
        if not response.content:
            return None
        return response.json()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "ManagementClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
