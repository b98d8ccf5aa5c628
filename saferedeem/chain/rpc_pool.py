"""RPC endpoint pool with rotation and liveness probing."""

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import TypeVar

from web3 import Web3

from saferedeem.redeem.errors import AllEndpointsUnavailable, TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROBE_TIMEOUT_SECONDS = 5.0
PROBE_BACKOFF_SECONDS = 0.5
REQUEST_TIMEOUT_SECONDS = 10


def call_with_timeout(fn: Callable[[], T], timeout: float) -> T:
    """Race ``fn`` against a timer.

    Raises TransientNetworkError if the timer fires first. The worker thread is
    abandoned, not killed, so ``fn`` must not hold locks the caller needs.
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout as e:
        raise TransientNetworkError(f"Call timed out after {timeout}s") from e
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def make_web3(url: str, timeout: float = REQUEST_TIMEOUT_SECONDS) -> Web3:
    """Open an HTTP connection to an RPC endpoint."""
    return Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))


@dataclass
class RpcEndpoint:
    """An RPC URL plus its last observed liveness."""

    url: str
    healthy: bool | None = None  # None until first probe
    failures: int = 0
    last_error: str = ""

    def mark_ok(self) -> None:
        self.healthy = True
        self.last_error = ""

    def mark_failed(self, error: str) -> None:
        self.healthy = False
        self.failures += 1
        self.last_error = error


class RpcEndpointPool:
    """Rotates through RPC endpoints and returns the first one that answers.

    The rotation cursor is the only state kept between acquisitions, so two
    consecutive calls may hand out different endpoints. Callers re-acquire
    when a connection they hold stops working.
    """

    def __init__(
        self,
        urls: list[str],
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
        backoff: float = PROBE_BACKOFF_SECONDS,
        connect: Callable[[str], Web3] = make_web3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the pool.

        Args:
            urls: Ordered list of RPC endpoint URLs
            probe_timeout: Seconds a liveness probe may take
            backoff: Seconds to wait after a failed probe
            connect: Factory turning a URL into a Web3 connection
            sleep: Sleep function (injectable for tests)
        """
        if not urls:
            raise ValueError("At least one RPC endpoint is required")

        self.endpoints = [RpcEndpoint(url=url) for url in urls]
        self._cursor = 0
        self._probe_timeout = probe_timeout
        self._backoff = backoff
        self._connect = connect
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        """Probe attempts before giving up: twice around the list."""
        return 2 * len(self.endpoints)

    def _next_endpoint(self) -> RpcEndpoint:
        endpoint = self.endpoints[self._cursor]
        self._cursor = (self._cursor + 1) % len(self.endpoints)
        return endpoint

    def _probe(self, w3: Web3) -> int:
        return call_with_timeout(lambda: w3.eth.block_number, self._probe_timeout)

    def acquire(self) -> tuple[Web3, str]:
        """Return a live connection and the URL it points at.

        Raises:
            AllEndpointsUnavailable: every probe failed, twice around the list
        """
        last_error = ""
        for attempt in range(1, self.max_attempts + 1):
            endpoint = self._next_endpoint()
            try:
                w3 = self._connect(endpoint.url)
                block = self._probe(w3)
            except Exception as e:
                last_error = f"{endpoint.url}: {e}"
                endpoint.mark_failed(str(e))
                logger.debug(f"RPC probe failed ({attempt}/{self.max_attempts}) {last_error}")
                self._sleep(self._backoff)
                continue

            endpoint.mark_ok()
            logger.debug(f"RPC {endpoint.url} alive at block {block}")
            return w3, endpoint.url

        raise AllEndpointsUnavailable(self.max_attempts, last_error)
