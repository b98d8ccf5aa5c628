"""Submission strategies for signed Safe transactions.

All strategies take the same SafeTransaction and SafeSignature; only the
transport differs:

1. Direct: the owner EOA calls execTransaction and pays gas
2. Relayer: the builder relayer broadcasts on our behalf
3. Dry run: eth_call only, nothing is broadcast
"""

import logging
from abc import ABC, abstractmethod

from eth_account.signers.local import LocalAccount
from web3 import Web3

from saferedeem.chain.safe_gateway import SafeGateway
from saferedeem.redeem.models import SafeSignature, SafeTransaction, SubmissionResult
from saferedeem.redeem.relayer_client import SIGNER_TYPE_SAFE, RelayerClient

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 400_000
DEFAULT_RECEIPT_TIMEOUT = 120
DEFAULT_RELAYER_SETTLE_SECONDS = 5.0


class SubmissionStrategy(ABC):
    """Hands a signed Safe transaction to the chain."""

    name: str = "strategy"
    consumes_nonce: bool = True
    settle_delay: float = 0.0  # seconds to wait before the closing balance read

    def prepare(self, gateway: SafeGateway) -> None:
        """Per-run setup before the first candidate."""

    @abstractmethod
    def next_nonce(self, gateway: SafeGateway) -> int:
        """Nonce to sign the next transaction with."""

    @abstractmethod
    def submit(
        self, safe_tx: SafeTransaction, signature: SafeSignature, gateway: SafeGateway
    ) -> SubmissionResult:
        """Submit the transaction. Never retried by the caller."""

    def accepted(self, safe_tx: SafeTransaction) -> None:
        """Called after a submission was accepted."""

    def forget(self, safe_tx: SafeTransaction) -> None:
        """Called when a submission outcome stays unknown after every attempt."""

    def close(self) -> None:
        """Release any resources held by the strategy."""

    @abstractmethod
    def landed(self, safe_tx: SafeTransaction, gateway: SafeGateway) -> bool:
        """Whether a submission with unknown outcome consumed its nonce."""


class DirectSubmitter(SubmissionStrategy):
    """Executes through Safe.execTransaction from the owner EOA."""

    name = "direct"

    def __init__(
        self,
        account: LocalAccount,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        receipt_timeout: int = DEFAULT_RECEIPT_TIMEOUT,
    ):
        self.account = account
        self.gas_limit = gas_limit
        self.receipt_timeout = receipt_timeout

    def next_nonce(self, gateway: SafeGateway) -> int:
        # Not cached between candidates
        return gateway.safe_nonce()

    def submit(
        self, safe_tx: SafeTransaction, signature: SafeSignature, gateway: SafeGateway
    ) -> SubmissionResult:
        # Reverts (already redeemed, unresolved) surface here, before gas is spent
        gateway.simulate_exec(safe_tx, signature, self.account.address)

        tx_hash = gateway.send_exec(safe_tx, signature, self.account, self.gas_limit)
        status = gateway.wait_for_status(tx_hash, self.receipt_timeout)

        if status == 1:
            return SubmissionResult.confirmed_with(self.name, tx_hash, status)
        return SubmissionResult.rejected(self.name, "Safe transaction reverted", tx_id=tx_hash)

    def landed(self, safe_tx: SafeTransaction, gateway: SafeGateway) -> bool:
        return gateway.safe_nonce() > safe_tx.nonce


class RelayerSubmitter(SubmissionStrategy):
    """Submits through the builder relayer; gas is paid by the relayer.

    The Safe nonce is read from the relayer once per run and then tracked
    locally, since the relayer does not report the post-submission nonce.
    This assumes a single writer per Safe.
    """

    name = "relayer"

    def __init__(
        self,
        client: RelayerClient,
        signer_address: str,
        safe_address: str,
        metadata: str = "",
        settle_delay: float = DEFAULT_RELAYER_SETTLE_SECONDS,
    ):
        self.client = client
        self.signer_address = Web3.to_checksum_address(signer_address)
        self.safe_address = Web3.to_checksum_address(safe_address)
        self.metadata = metadata
        self.settle_delay = settle_delay
        self._nonce: int | None = None

    def prepare(self, gateway: SafeGateway) -> None:
        relay_address = self.client.get_relay_address()
        logger.info(f"Relayer: {relay_address}")
        self._nonce = self.client.get_nonce(self.signer_address, SIGNER_TYPE_SAFE)
        logger.info(f"Got relayer nonce: {self._nonce}")

    def next_nonce(self, gateway: SafeGateway) -> int:
        if self._nonce is None:
            self._nonce = self.client.get_nonce(self.signer_address, SIGNER_TYPE_SAFE)
        return self._nonce

    def build_request(self, safe_tx: SafeTransaction, signature: SafeSignature) -> dict:
        """Relayer submission body."""
        return {
            "from": self.signer_address,
            "to": safe_tx.to,
            "proxyWallet": self.safe_address,
            "data": Web3.to_hex(safe_tx.data),
            "nonce": str(safe_tx.nonce),
            "signature": signature.to_hex(),
            "signatureParams": safe_tx.signature_params(),
            "type": SIGNER_TYPE_SAFE,
            "metadata": self.metadata,
        }

    def submit(
        self, safe_tx: SafeTransaction, signature: SafeSignature, gateway: SafeGateway
    ) -> SubmissionResult:
        result = self.client.submit(self.build_request(safe_tx, signature))
        transaction_id = result.get("transactionID")
        state = result.get("state")

        if not transaction_id:
            return SubmissionResult.rejected(self.name, f"No transaction id in response: {result}")

        logger.info(f"Relayer transaction submitted: {transaction_id} ({state})")
        return SubmissionResult.confirmed_with(self.name, transaction_id, state)

    def accepted(self, safe_tx: SafeTransaction) -> None:
        self._nonce = max(self._nonce or 0, safe_tx.nonce + 1)

    def forget(self, safe_tx: SafeTransaction) -> None:
        # Re-read from the relayer on the next candidate
        self._nonce = None

    def close(self) -> None:
        self.client.close()

    def landed(self, safe_tx: SafeTransaction, gateway: SafeGateway) -> bool:
        current = self.client.get_nonce(self.signer_address, SIGNER_TYPE_SAFE)
        if current > safe_tx.nonce:
            self._nonce = current
            return True
        return False


class DryRunSubmitter(SubmissionStrategy):
    """Simulates execTransaction with eth_call; broadcasts nothing."""

    name = "dry-run"
    consumes_nonce = False

    def __init__(self, sender: str):
        self.sender = Web3.to_checksum_address(sender)

    def next_nonce(self, gateway: SafeGateway) -> int:
        return gateway.safe_nonce()

    def submit(
        self, safe_tx: SafeTransaction, signature: SafeSignature, gateway: SafeGateway
    ) -> SubmissionResult:
        gateway.simulate_exec(safe_tx, signature, self.sender)
        logger.info(f"[DRY RUN] execTransaction would succeed at nonce {safe_tx.nonce}")
        return SubmissionResult.confirmed_with(self.name, None, "simulated")

    def landed(self, safe_tx: SafeTransaction, gateway: SafeGateway) -> bool:
        return False
