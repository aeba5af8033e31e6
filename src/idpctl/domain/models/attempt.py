"""Attempt model - one try of an outbound HTTP request"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from requests import PreparedRequest, Response


@dataclass(frozen=True)
class Attempt:
    """Outcome of a single try, handed to a retry policy and then dropped"""

    request: "PreparedRequest"
    index: int  # 0-based; 0 is the first try
    response: Optional["Response"] = None  # None on transport-level failure
    error: Optional[BaseException] = None
    elapsed: float = 0.0  # Seconds since the first try started

    @property
    def failed(self) -> bool:
        """Check if the try raised instead of producing a response"""
        return self.error is not None

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None


@dataclass(frozen=True)
class RetryDecision:
    """What a retry policy decided for an attempt"""

    should_retry: bool
    delay: float = 0.0  # Seconds to wait before the next try
