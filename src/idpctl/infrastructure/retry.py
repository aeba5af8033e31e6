"""Retry policies and transport error classification.

Policies are pure decisions over an :class:`Attempt`: whether to try again and
how long to wait first. The retrying transports in
:mod:`idpctl.infrastructure.http_client` drive them from a tenacity loop.
"""

from __future__ import annotations

import random
import re
import ssl
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional, Union

import requests

from idpctl.domain.config.transport import DEFAULT_RETRYABLE_STATUS_CODES, TransportConfig
from idpctl.domain.models.attempt import Attempt, RetryDecision
from idpctl.infrastructure.cancellation import RequestCancelled

RETRYABLE_STATUS_CODES = DEFAULT_RETRYABLE_STATUS_CODES

TOO_MANY_REQUESTS = 429

_REDIRECT_LOOP_RE = re.compile(r"stopped after \d+ redirects\Z")
_EXCEEDED_REDIRECTS_RE = re.compile(r"Exceeded \d+ redirects")
# Plain ASCII integer; no sign prefix other than "-", no underscores or padding
_RESET_TIMESTAMP_RE = re.compile(r"-?[0-9]+")
_UNSUPPORTED_SCHEME_RE = re.compile(r"unsupported protocol scheme")

# OpenSSL verify codes meaning the issuer could not be found or trusted.
_UNKNOWN_AUTHORITY_CODES = frozenset({2, 18, 19, 20})
_UNKNOWN_AUTHORITY_MESSAGES = (
    "unable to get local issuer certificate",
    "unable to get issuer certificate",
    "self signed certificate",
    "self-signed certificate",
)


class ErrorKind(str, Enum):
    """Normalized category of a transport-level error"""

    TOO_MANY_REDIRECTS = "too_many_redirects"
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    CERTIFICATE_VERIFICATION = "certificate_verification"
    UNKNOWN_AUTHORITY = "unknown_authority"
    CANCELLED = "cancelled"
    OTHER = "other"


NON_RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.TOO_MANY_REDIRECTS,
        ErrorKind.UNSUPPORTED_SCHEME,
        ErrorKind.CERTIFICATE_VERIFICATION,
        ErrorKind.UNKNOWN_AUTHORITY,
        ErrorKind.CANCELLED,
    }
)


@dataclass(frozen=True)
class ErrorDescription:
    """Kind and message of a transport error, independent of the raising library"""

    kind: ErrorKind
    message: str = ""


def _error_chain(error: BaseException) -> Iterator[BaseException]:
    """Walk an exception and everything it wraps.

    requests wraps urllib3 errors, which keep the underlying socket or ssl
    error in ``reason`` or in ``args`` rather than always in ``__cause__``.
    """
    pending = [error]
    seen = set()
    while pending:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        for linked in (current.__cause__, current.__context__, getattr(current, "reason", None)):
            if isinstance(linked, BaseException):
                pending.append(linked)
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))


def _certificate_kind(error: BaseException) -> Optional[ErrorKind]:
    message = str(error).lower()
    if isinstance(error, ssl.SSLCertVerificationError):
        message = f"{getattr(error, 'verify_message', None) or ''} {message}".lower()
    elif not (
        isinstance(error, (ssl.SSLError, requests.exceptions.SSLError))
        and "certificate verify failed" in message
    ):
        return None
    if getattr(error, "verify_code", None) in _UNKNOWN_AUTHORITY_CODES or any(
        text in message for text in _UNKNOWN_AUTHORITY_MESSAGES
    ):
        return ErrorKind.UNKNOWN_AUTHORITY
    return ErrorKind.CERTIFICATE_VERIFICATION


def describe_error(error: BaseException) -> ErrorDescription:
    """Normalize an exception raised while sending a request

    Structured exception types are checked first; message patterns cover
    errors that only carry text.

    Args:
        error: Exception raised by a transport

    Returns:
        ErrorDescription with the most specific kind found
    """
    message = str(error)

    if isinstance(error, RequestCancelled):
        return ErrorDescription(ErrorKind.CANCELLED, message)
    if isinstance(error, requests.exceptions.TooManyRedirects):
        return ErrorDescription(ErrorKind.TOO_MANY_REDIRECTS, message)
    if isinstance(error, (requests.exceptions.InvalidSchema, requests.exceptions.MissingSchema)):
        return ErrorDescription(ErrorKind.UNSUPPORTED_SCHEME, message)

    for linked in _error_chain(error):
        linked_message = str(linked)
        if _REDIRECT_LOOP_RE.search(linked_message) or _EXCEEDED_REDIRECTS_RE.search(linked_message):
            return ErrorDescription(ErrorKind.TOO_MANY_REDIRECTS, message)
        if _UNSUPPORTED_SCHEME_RE.search(linked_message):
            return ErrorDescription(ErrorKind.UNSUPPORTED_SCHEME, message)
        kind = _certificate_kind(linked)
        if kind is not None:
            return ErrorDescription(kind, message)

    return ErrorDescription(ErrorKind.OTHER, message)


def is_retryable_error(error: Union[BaseException, ErrorDescription, None]) -> bool:
    """Check if a transport error is worth retrying

    Redirect loops, bad URL schemes, certificate failures and cancellation are
    final. Anything else is assumed transient.
    """
    if error is None:
        return False
    # KeyboardInterrupt, SystemExit and friends always stop the request
    if not isinstance(error, (Exception, ErrorDescription)):
        return False
    description = error if isinstance(error, ErrorDescription) else describe_error(error)
    return description.kind not in NON_RETRYABLE_KINDS


def rate_limit_delay(
    response: requests.Response,
    *,
    header: str = "X-RateLimit-Reset",
    fallback: float = 5.0,
    now: Optional[float] = None,
) -> float:
    """Seconds to wait until the rate limit advertised by ``response`` resets

    Args:
        response: 429 response
        header: Header carrying the reset time as a Unix timestamp
        fallback: Delay used when the header is missing or not an integer
        now: Current Unix time (defaults to time.time())

    Returns:
        Delay in whole seconds, never negative
    """
    value = response.headers.get(header)
    if value is None or not _RESET_TIMESTAMP_RE.fullmatch(value):
        return fallback
    reset_at = int(value)
    current = time.time() if now is None else now
    return float(max(0, reset_at - int(current)))


def exponential_jitter_delay(
    index: int,
    *,
    base: float,
    cap: float,
    rand: Callable[[], float] = random.random,
) -> float:
    """Capped exponential backoff scaled by a uniform random factor

    The ceiling for attempt ``index`` is ``min(cap, base * 2**index)``; the
    returned delay is that ceiling times a value drawn from [0, 1).
    """
    ceiling = min(cap, base * 2 ** min(index, 62))
    return ceiling * rand()


class RetryPolicy(ABC):
    """Decides whether an attempt should be retried and after what delay"""

    @abstractmethod
    def should_retry(self, attempt: Attempt) -> bool:
        pass

    @abstractmethod
    def delay(self, attempt: Attempt) -> float:
        pass

    def evaluate(self, attempt: Attempt) -> RetryDecision:
        if not self.should_retry(attempt):
            return RetryDecision(should_retry=False)
        return RetryDecision(should_retry=True, delay=self.delay(attempt))


class RateLimitPolicy(RetryPolicy):
    """Retry 429 responses once the server says capacity is back.

    Not bounded by attempts; the caller's timeout or cancel scope bounds it.
    """

    def __init__(self, config: Optional[TransportConfig] = None, clock: Callable[[], float] = time.time):
        self.config = config or TransportConfig()
        self._clock = clock

    def should_retry(self, attempt: Attempt) -> bool:
        return attempt.response is not None and attempt.response.status_code == TOO_MANY_REQUESTS

    def delay(self, attempt: Attempt) -> float:
        return rate_limit_delay(
            attempt.response,
            header=self.config.rate_limit_reset_header,
            fallback=self.config.rate_limit_fallback_delay,
            now=self._clock(),
        )


class ServerErrorPolicy(RetryPolicy):
    """Retry transient server errors and network failures with jittered backoff"""

    def __init__(self, config: Optional[TransportConfig] = None, rand: Callable[[], float] = random.random):
        self.config = config or TransportConfig()
        self._rand = rand

    def should_retry(self, attempt: Attempt) -> bool:
        if attempt.index >= self.config.max_retries:
            return False
        if attempt.response is not None:
            return attempt.response.status_code in self.config.retryable_status_codes
        return is_retryable_error(attempt.error)

    def delay(self, attempt: Attempt) -> float:
        return exponential_jitter_delay(
            attempt.index,
            base=self.config.initial_delay,
            cap=self.config.max_delay,
            rand=self._rand,
        )
