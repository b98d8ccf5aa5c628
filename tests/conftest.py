"""Pytest configuration and fixtures."""

from collections import defaultdict
from types import SimpleNamespace

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from saferedeem.chain.rpc_pool import RpcEndpointPool
from saferedeem.redeem.engine import RedemptionEngine
from saferedeem.redeem.errors import ChainRevert, TransientNetworkError
from saferedeem.redeem.models import RedemptionCandidate, SafeSignature, SafeTransaction, checksum
from saferedeem.redeem.safe_hash import LocalSafeTxHasher, compute_safe_tx_hash
from saferedeem.redeem.signer import SafeSigner

OWNER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
SAFE_ADDRESS = "0x" + "5afe" * 10
CHAIN_ID = 137

CONDITION_A = "0x5f65177b394277fd294cd75650044e32ba009a95022d88a0c1d565897d72f8f1"
CONDITION_B = "0x" + "bb" * 32
CONDITION_C = "0x" + "cc" * 32

# Offset of the conditionId argument inside redeemPositions calldata
_CONDITION_SLICE = slice(4 + 64, 4 + 96)


class FakeGateway:
    """In-memory stand-in for SafeGateway.

    Keeps a Safe nonce and a collateral balance, credits ``payouts`` when a
    redemption executes and checks owner signatures the way the Safe does.
    """

    def __init__(self, safe_address: str = SAFE_ADDRESS, owner: str | None = None):
        self.safe_address = checksum(safe_address)
        self.owner = owner
        self.nonce = 0
        self.balance = 0
        self.denominators: dict[str, int] = {}
        self.payouts: dict[str, int] = {}
        self.reverting: set[str] = set()
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.stale_reads = 0
        self.lost_receipts = 0
        self.sent: list[SafeTransaction] = []
        self.calls: list[str] = []

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.failures[name]:
            raise self.failures[name].pop(0)

    def safe_nonce(self) -> int:
        self._enter("safe_nonce")
        if self.stale_reads and self.nonce > 0:
            self.stale_reads -= 1
            return self.nonce - 1
        return self.nonce

    def transaction_hash(self, safe_tx: SafeTransaction) -> bytes:
        self._enter("transaction_hash")
        return compute_safe_tx_hash(CHAIN_ID, self.safe_address, safe_tx)

    def payout_denominator(self, condition_id: bytes) -> int:
        self._enter("payout_denominator")
        return self.denominators.get("0x" + condition_id.hex(), 1)

    def balance_of(self, token: str, holder: str) -> int:
        self._enter("balance_of")
        return self.balance

    def check(self, safe_tx: SafeTransaction, signature: SafeSignature) -> str:
        """Validate like execTransaction would and return the condition id."""
        if safe_tx.nonce != self.nonce:
            raise ChainRevert("execution reverted: GS026")
        if self.owner is not None:
            digest = compute_safe_tx_hash(CHAIN_ID, self.safe_address, safe_tx)
            recovered = Account.recover_message(
                encode_defunct(primitive=digest),
                vrs=(signature.v - 4, signature.r, signature.s),
            )
            if recovered != self.owner:
                raise ChainRevert("execution reverted: GS026")
        condition = "0x" + safe_tx.data[_CONDITION_SLICE].hex()
        if condition in self.reverting:
            raise ChainRevert("execution reverted")
        return condition

    def settle(self, condition: str) -> None:
        self.nonce += 1
        self.balance += self.payouts.pop(condition, 0)

    def simulate_exec(self, safe_tx, signature, sender) -> None:
        self._enter("simulate_exec")
        self.check(safe_tx, signature)

    def send_exec(self, safe_tx, signature, account, gas_limit) -> str:
        self._enter("send_exec")
        self.settle(self.check(safe_tx, signature))
        self.sent.append(safe_tx)
        if self.lost_receipts:
            self.lost_receipts -= 1
            raise TransientNetworkError("connection reset after broadcast")
        return "0x" + f"{len(self.sent):064x}"

    def wait_for_status(self, tx_hash: str, timeout: int) -> int:
        self._enter("wait_for_status")
        return 1


def live_web3() -> SimpleNamespace:
    """Connection whose liveness probe always answers."""
    return SimpleNamespace(eth=SimpleNamespace(block_number=1))


@pytest.fixture
def signer() -> SafeSigner:
    """Safe owner key used across tests."""
    return SafeSigner(OWNER_KEY)


@pytest.fixture
def gateway(signer: SafeSigner) -> FakeGateway:
    """Fake Safe with the test signer as its owner."""
    return FakeGateway(owner=signer.address)


@pytest.fixture
def candidate() -> RedemptionCandidate:
    """A resolved USDC.e market."""
    return RedemptionCandidate(condition_id=CONDITION_A)


@pytest.fixture
def sleeps() -> list[float]:
    """Records every sleep requested by the code under test."""
    return []


@pytest.fixture
def make_pool(sleeps: list[float]):
    """Factory for endpoint pools that never touch the network."""

    def factory(urls=("https://rpc-a.test", "https://rpc-b.test"), connect=None):
        return RpcEndpointPool(
            list(urls),
            probe_timeout=1.0,
            backoff=0.5,
            connect=connect or (lambda url: live_web3()),
            sleep=sleeps.append,
        )

    return factory


@pytest.fixture
def make_engine(signer: SafeSigner, gateway: FakeGateway, make_pool, sleeps: list[float]):
    """Factory for engines wired to the fake gateway."""

    def factory(strategy, pool=None, **kwargs):
        options = {
            "cooldown": 2.0,
            "retry_attempts": 3,
            "retry_delay": 0.25,
            "candidate_attempts": 3,
        }
        options.update(kwargs)
        return RedemptionEngine(
            pool=pool or make_pool(),
            signer=signer,
            strategy=strategy,
            hasher=LocalSafeTxHasher(CHAIN_ID, SAFE_ADDRESS),
            safe_address=SAFE_ADDRESS,
            gateway_factory=lambda w3: gateway,
            sleep=sleeps.append,
            **options,
        )

    return factory
