"""Error taxonomy for the redemption engine.

Library exceptions (web3, requests, httpx) are translated into these types at
the chain gateway and relayer client boundaries, so the engine can classify
failures by type instead of by message text.
"""


class RedemptionError(Exception):
    """Base class for redemption engine errors."""


class EndpointUnavailable(RedemptionError):
    """No usable RPC endpoint. Fatal for the run."""


class AllEndpointsUnavailable(EndpointUnavailable):
    """Every configured endpoint failed its probe, twice around the list."""

    def __init__(self, attempts: int, last_error: str = ""):
        self.attempts = attempts
        self.last_error = last_error
        message = f"All RPC endpoints failed after {attempts} attempts"
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message)


class TransientNetworkError(RedemptionError):
    """Single-call timeout or connection failure. Safe to retry reads."""


class ChainRevert(RedemptionError):
    """Contract-level rejection. Never retried."""


class AuthFailure(RedemptionError):
    """Relayer rejected our credentials. Fatal for the run."""


class RelayerRejected(RedemptionError):
    """Relayer refused the request for a non-auth reason."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Relayer error: {status_code} - {body}")


class InconsistentBalance(RedemptionError):
    """Collateral balance decreased across a redemption run."""

    def __init__(self, before: int, after: int):
        self.before = before
        self.after = after
        super().__init__(f"Collateral balance decreased: {before} -> {after}")


class SubmissionOutcomeUnknown(TransientNetworkError):
    """Transport failed after a signed transaction was handed off.

    The transaction may or may not have landed; check the nonce before
    building a replacement.
    """

    def __init__(self, safe_tx_nonce: int, cause: Exception):
        self.safe_tx_nonce = safe_tx_nonce
        super().__init__(f"Submission outcome unknown at nonce {safe_tx_nonce}: {cause}")
