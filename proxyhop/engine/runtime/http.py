import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import httpx

from proxyhop.engine.error_handler import ErrorClassifier
from proxyhop.engine.errors import EngineError, HTTPStatusError, TimedOutError
from proxyhop.engine.runtime.builder import ResolvedRequest
from proxyhop.engine.runtime.pool import ConnectionPoolManager
from proxyhop.engine.runtime.ssrf import check_target

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    IDLE = "idle"
    SENT = "sent"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class RequestAttempt:
    """One dispatch of a resolved request and how it ended."""

    request: ResolvedRequest
    state: RequestState = RequestState.IDLE
    response: Optional[httpx.Response] = None
    error: Optional[EngineError] = None
    elapsed_ms: float = 0.0


class RequestExecutor:
    """
    Sends resolved requests through pooled agents.

    The request's timeout is enforced as a hard deadline over the whole
    exchange (connect, redirects and body), independent of the socket level
    timeouts of the transport.
    """

    def __init__(self, pool: ConnectionPoolManager):
        self.pool = pool

    async def send(self, request: ResolvedRequest) -> RequestAttempt:
        attempt = RequestAttempt(request=request)
        agent = self.pool.get_agent(request.agent_key)

        # The client only borrows the pooled transport and is never closed,
        # closing it would close the agent for every other request.
        client = httpx.AsyncClient(
            transport=agent.transport,
            timeout=agent.timeout,
            follow_redirects=request.follow_redirects,
            max_redirects=request.max_redirects,
            auth=request.auth,
            trust_env=False,
            event_hooks={"request": [self._guard_hop(request)]},
        )

        started = time.monotonic()
        attempt.state = RequestState.SENT
        logger.debug(f"{request.method} {request.safe_url} via {agent.key.kind} agent")
        try:
            attempt.response = await asyncio.wait_for(
                client.send(request.to_httpx(client)),
                timeout=request.timeout_ms / 1000,
            )
            attempt.state = RequestState.COMPLETED
        except asyncio.TimeoutError:
            attempt.state = RequestState.TIMED_OUT
            attempt.error = TimedOutError(request.timeout_ms, request=request.summary)
        except asyncio.CancelledError:
            attempt.state = RequestState.ABORTED
            raise
        except EngineError as e:
            # Raised by the request hook when a redirect points at an internal host
            if e.request is None:
                e.request = request.summary
            attempt.state = RequestState.ABORTED
            attempt.error = e
        except httpx.HTTPError as e:
            attempt.error = ErrorClassifier.classify(e, request)
            attempt.state = (
                RequestState.TIMED_OUT
                if isinstance(attempt.error, TimedOutError)
                else RequestState.TRANSPORT_ERROR
            )
        finally:
            attempt.elapsed_ms = (time.monotonic() - started) * 1000
            request.close_streams()

        if attempt.error is not None:
            logger.warning(
                f"{request.method} {request.safe_url} failed after "
                f"{attempt.elapsed_ms:.0f}ms: {attempt.error.code}"
            )
        else:
            response = attempt.response
            if response.history:
                logger.debug(f"Followed {len(response.history)} redirect(s) to {response.url}")
            logger.debug(
                f"{request.method} {request.safe_url} -> {response.status_code} "
                f"in {attempt.elapsed_ms:.0f}ms"
            )
        return attempt

    @staticmethod
    def _guard_hop(request: ResolvedRequest):
        """Request hook that re-checks every redirect target against the internal network block."""

        async def check(outgoing: httpx.Request) -> None:
            check_target(str(outgoing.url), request.allow_internal_network_access)

        return check

    async def execute(
        self,
        request: ResolvedRequest,
        *,
        never_error: bool = False,
        accept_status_codes: Iterable[int] = (),
    ) -> httpx.Response:
        """Send `request` and return the response, raising engine errors on failure."""
        attempt = await self.send(request)
        if attempt.error is not None:
            raise attempt.error

        response = attempt.response
        if (
            response.status_code >= 400
            and not never_error
            and response.status_code not in set(accept_status_codes)
        ):
            raise HTTPStatusError(
                response.status_code,
                response.reason_phrase,
                body=_error_body(response),
                request=request.summary,
            )
        return response


def _error_body(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text
