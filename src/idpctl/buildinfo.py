"""Build metadata reported to the management API"""

import platform

__version__ = "1.0.0"

CLIENT_NAME = "idpctl"


def user_agent() -> str:
    """User-Agent header value, e.g. "idpctl/1.0.0" """
    return f"{CLIENT_NAME}/{__version__.lstrip('v')}"


def runtime_env() -> dict:
    """Runtime details sent in the client telemetry header"""
    return {
        "python": platform.python_version(),
        "os": platform.system().lower(),
    }
