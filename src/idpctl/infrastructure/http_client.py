"""Resilient HTTP transport for the management API (requests + tenacity).

Transports are requests adapters chained like middleware: each one holds the
next adapter and retries through it according to its policy. The chain used by
the management client is::

    RateLimitAdapter -> RetryableErrorAdapter -> HTTPAdapter

We keep HTTP logic centralized to avoid divergence across commands.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import requests
from requests.adapters import BaseAdapter, HTTPAdapter
from requests.utils import rewind_body
from tenacity import RetryCallState, Retrying, nap

from idpctl.domain.config.transport import TransportConfig
from idpctl.domain.models.attempt import Attempt
from idpctl.infrastructure.cancellation import CancelScope, current_scope
from idpctl.infrastructure.retry import RateLimitPolicy, RetryPolicy, ServerErrorPolicy

logger = logging.getLogger(__name__)


def _default_sleep(seconds: float) -> None:
    # Looked up on each call so tests can patch tenacity.nap.sleep
    nap.sleep(seconds)


def _discard(response: requests.Response) -> None:
    """Release the connection held by a response that is about to be retried"""
    if response.raw is not None:
        response.close()


class RetryingAdapter(BaseAdapter):
    """Adapter that retries requests through the next adapter in the chain

    The policy decides per attempt; this class only runs the loop. Every piece
    of per-request state lives in :meth:`send`, so one instance may serve
    concurrent requests.
    """

    def __init__(
        self,
        next_adapter: BaseAdapter,
        policy: RetryPolicy,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize retrying adapter

        Args:
            next_adapter: Adapter that performs each attempt
            policy: Retry decision for each attempt
            sleep: Backoff sleep (default: tenacity's sleep, or the cancel scope's wait)
            clock: Monotonic clock used to measure attempt elapsed time
        """
        super().__init__()
        self.next_adapter = next_adapter
        self.policy = policy
        self._sleep = sleep
        self._clock = clock

    def send(
        self,
        request: requests.PreparedRequest,
        stream: bool = False,
        timeout: Any = None,
        verify: Any = True,
        cert: Any = None,
        proxies: Any = None,
    ) -> requests.Response:
        scope = current_scope()
        started = self._clock()

        def _attempt(retry_state: RetryCallState) -> Attempt:
            outcome = retry_state.outcome
            failed = outcome.failed
            return Attempt(
                request=request,
                index=retry_state.attempt_number - 1,
                response=None if failed else outcome.result(),
                error=outcome.exception() if failed else None,
                elapsed=self._clock() - started,
            )

        def _before(retry_state: RetryCallState) -> None:
            if scope is not None:
                scope.check()
            if retry_state.attempt_number > 1 and getattr(request, "_body_position", None) is not None:
                rewind_body(request)

        def _before_sleep(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            if outcome.failed:
                reason = f"error: {outcome.exception()}"
            else:
                response = outcome.result()
                reason = f"status {response.status_code}"
                _discard(response)
            logger.warning(
                f"{request.method} {request.url} failed with {reason} "
                f"(attempt {retry_state.attempt_number}). Retrying in {delay:.2f}s..."
            )

        def _cancelled(retry_state: RetryCallState) -> requests.Response:
            outcome = retry_state.outcome
            if outcome is not None and not outcome.failed:
                _discard(outcome.result())
            cause = outcome.exception() if outcome is not None else None
            raise scope.error() from cause

        retrying = Retrying(
            retry=lambda retry_state: self.policy.should_retry(_attempt(retry_state)),
            wait=lambda retry_state: self.policy.delay(_attempt(retry_state)),
            stop=lambda retry_state: scope is not None and scope.cancelled,
            sleep=self._sleep_for(scope),
            before=_before,
            before_sleep=_before_sleep,
            retry_error_callback=_cancelled,
            reraise=True,
        )
        return retrying(
            self._send_once,
            request,
            scope,
            stream=stream,
            timeout=timeout,
            verify=verify,
            cert=cert,
            proxies=proxies,
        )

    def _send_once(
        self, request: requests.PreparedRequest, scope: Optional[CancelScope], **kwargs: Any
    ) -> requests.Response:
        if scope is not None:
            kwargs["timeout"] = scope.clamp_timeout(kwargs.get("timeout"))
        logger.debug(f"HTTP {request.method} {request.url}")
        return self.next_adapter.send(request, **kwargs)

    def _sleep_for(self, scope: Optional[CancelScope]) -> Callable[[float], None]:
        if self._sleep is not None:
            return self._sleep
        if scope is not None:
            return scope.wait
        return _default_sleep

    def close(self) -> None:
        self.next_adapter.close()


class RateLimitAdapter(RetryingAdapter):
    """Retries 429 responses after the server-advertised reset time"""

    def __init__(
        self,
        next_adapter: BaseAdapter,
        config: Optional[TransportConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(next_adapter, RateLimitPolicy(config, clock=clock), sleep=sleep)


class RetryableErrorAdapter(RetryingAdapter):
    """Retries transient server errors and network failures with jittered backoff"""

    def __init__(
        self,
        next_adapter: BaseAdapter,
        config: Optional[TransportConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
        rand: Optional[Callable[[], float]] = None,
    ):
        policy = ServerErrorPolicy(config) if rand is None else ServerErrorPolicy(config, rand=rand)
        super().__init__(next_adapter, policy, sleep=sleep)


def build_transport(
    config: Optional[TransportConfig] = None,
    base: Optional[BaseAdapter] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> BaseAdapter:
    """Compose the rate-limit and retryable-error transports around a base adapter

    Args:
        config: Retry constants (defaults to TransportConfig())
        base: Adapter doing the actual network exchange (default: HTTPAdapter
            with urllib3 retries disabled)
        sleep: Backoff sleep override, mainly for tests

    Returns:
        Outermost adapter of the chain
    """
    config = config or TransportConfig()
    base = base or HTTPAdapter(max_retries=0)
    return RateLimitAdapter(
        RetryableErrorAdapter(base, config, sleep=sleep),
        config,
        sleep=sleep,
    )


def session_with_retries(
    config: Optional[TransportConfig] = None,
    base: Optional[BaseAdapter] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> requests.Session:
    """Create a requests session whose http(s) traffic goes through the retry chain"""
    session = requests.Session()
    transport = build_transport(config, base=base, sleep=sleep)
    session.mount("https://", transport)
    session.mount("http://", transport)
    return session
