"""Data models for the redemption engine."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum

from eth_utils import is_address, to_checksum_address

from saferedeem.chain.contracts import NULL_ADDRESS, USDC_ADDRESS, USDC_DECIMALS
from saferedeem.redeem.errors import InconsistentBalance

ZERO_BYTES32 = bytes(32)
BINARY_INDEX_SETS = (1, 2)  # YES=1, NO=2


def normalize_bytes32(value: str | bytes) -> str:
    """Normalize a 32-byte identifier to a lowercase 0x-prefixed hex string."""
    if isinstance(value, bytes):
        if len(value) != 32:
            raise ValueError(f"Expected 32 bytes, got {len(value)}")
        return "0x" + value.hex()

    hex_str = value.lower()
    if not hex_str.startswith("0x"):
        hex_str = "0x" + hex_str
    try:
        raw = bytes.fromhex(hex_str[2:])
    except ValueError as e:
        raise ValueError(f"Invalid hex identifier: {value}") from e
    if len(raw) != 32:
        raise ValueError(f"Identifier must be 32 bytes: {value}")
    return hex_str


def checksum(address: str) -> str:
    """Checksum an address, rejecting anything that is not 20 bytes of hex."""
    if not is_address(address):
        raise ValueError(f"Invalid address: {address}")
    return to_checksum_address(address)


class Operation(IntEnum):
    """Safe operation type."""

    CALL = 0
    DELEGATE_CALL = 1


class SubmissionKind(str, Enum):
    """Whether a submission was accepted."""

    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class Outcome(str, Enum):
    """Per-candidate classification."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    RETRYABLE = "retryable"
    FAILED = "failed"


@dataclass(frozen=True)
class RedemptionCandidate:
    """A resolved market whose positions should be redeemed."""

    condition_id: str
    collateral_token: str = USDC_ADDRESS
    parent_collection_id: bytes = ZERO_BYTES32
    index_sets: tuple[int, ...] = BINARY_INDEX_SETS

    def __post_init__(self) -> None:
        object.__setattr__(self, "condition_id", normalize_bytes32(self.condition_id))
        object.__setattr__(self, "collateral_token", checksum(self.collateral_token))
        object.__setattr__(self, "index_sets", tuple(int(i) for i in self.index_sets))
        if len(self.parent_collection_id) != 32:
            raise ValueError("parent_collection_id must be 32 bytes")
        if not self.index_sets or any(i <= 0 for i in self.index_sets):
            raise ValueError(f"Invalid index sets: {self.index_sets}")

    @property
    def condition_bytes(self) -> bytes:
        return bytes.fromhex(self.condition_id[2:])

    @property
    def short_id(self) -> str:
        return f"{self.condition_id[:10]}..."

    @classmethod
    def from_dict(cls, data: dict) -> "RedemptionCandidate":
        """Create from a market-resolution record (camelCase or snake_case keys)."""
        condition_id = data.get("conditionId") or data.get("condition_id")
        if not condition_id:
            raise ValueError(f"Missing condition id in {data}")
        collateral = data.get("collateralToken") or data.get("collateral_token") or USDC_ADDRESS
        return cls(condition_id=condition_id, collateral_token=collateral)


@dataclass(frozen=True)
class SafeTransaction:
    """A Gnosis Safe transaction. Gas and refund fields stay zero in this engine."""

    to: str
    data: bytes
    nonce: int
    value: int = 0
    operation: Operation = Operation.CALL
    safe_tx_gas: int = 0
    base_gas: int = 0
    gas_price: int = 0
    gas_token: str = NULL_ADDRESS
    refund_receiver: str = NULL_ADDRESS

    def __post_init__(self) -> None:
        object.__setattr__(self, "to", checksum(self.to))
        object.__setattr__(self, "gas_token", checksum(self.gas_token))
        object.__setattr__(self, "refund_receiver", checksum(self.refund_receiver))
        object.__setattr__(self, "operation", Operation(self.operation))
        if self.nonce < 0:
            raise ValueError("nonce must be non-negative")

    def exec_args(self, signatures: bytes) -> list:
        """Positional arguments for Safe.execTransaction."""
        return [
            self.to,
            self.value,
            self.data,
            int(self.operation),
            self.safe_tx_gas,
            self.base_gas,
            self.gas_price,
            self.gas_token,
            self.refund_receiver,
            signatures,
        ]

    def hash_args(self) -> list:
        """Positional arguments for Safe.getTransactionHash."""
        return [*self.exec_args(b"")[:-1], self.nonce]

    def signature_params(self) -> dict[str, str]:
        """Relayer ``signatureParams`` - all values must be strings."""
        return {
            "gasPrice": str(self.gas_price),
            "operation": str(int(self.operation)),
            "safeTxnGas": str(self.safe_tx_gas),
            "baseGas": str(self.base_gas),
            "gasToken": self.gas_token,
            "refundReceiver": self.refund_receiver,
        }


@dataclass(frozen=True)
class SafeSignature:
    """ECDSA signature with ``v`` already adjusted for the Safe."""

    r: int
    s: int
    v: int

    @property
    def packed(self) -> bytes:
        """Signature bytes: r (32) + s (32) + v (1)."""
        return self.r.to_bytes(32, "big") + self.s.to_bytes(32, "big") + bytes([self.v])

    def to_hex(self) -> str:
        return "0x" + self.packed.hex()


@dataclass
class SubmissionResult:
    """Result of handing a signed Safe transaction to a submission strategy."""

    kind: SubmissionKind
    via: str
    tx_id: str | None = None  # chain tx hash or relayer transaction id
    status: int | str | None = None  # on-chain status or relayer state
    reason: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.kind == SubmissionKind.CONFIRMED

    @classmethod
    def confirmed_with(
        cls, via: str, tx_id: str | None, status: int | str | None
    ) -> "SubmissionResult":
        return cls(kind=SubmissionKind.CONFIRMED, via=via, tx_id=tx_id, status=status)

    @classmethod
    def rejected(cls, via: str, reason: str, tx_id: str | None = None) -> "SubmissionResult":
        return cls(kind=SubmissionKind.REJECTED, via=via, tx_id=tx_id, reason=reason)


@dataclass
class CandidateResult:
    """Final classification of one candidate."""

    candidate: RedemptionCandidate
    outcome: Outcome
    nonce: int | None = None
    submission: SubmissionResult | None = None
    detail: str = ""
    attempts: int = 1


@dataclass
class BalanceSnapshot:
    """Collateral balance of the Safe before and after a batch (raw units)."""

    before: int
    after: int | None = None
    decimals: int = USDC_DECIMALS

    @property
    def delta(self) -> int:
        if self.after is None:
            return 0
        return self.after - self.before

    def to_units(self, raw: int) -> Decimal:
        return Decimal(raw) / (Decimal(10) ** self.decimals)

    def verify(self) -> None:
        """Raise InconsistentBalance if the balance went down."""
        if self.after is not None and self.after < self.before:
            raise InconsistentBalance(self.before, self.after)


@dataclass
class RunReport:
    """Outcome of one redemption run."""

    strategy: str
    results: list[CandidateResult] = field(default_factory=list)
    balance: BalanceSnapshot | None = None
    endpoint: str | None = None
    balance_consistent: bool = True

    def counts(self) -> dict[Outcome, int]:
        tally = {outcome: 0 for outcome in Outcome}
        for result in self.results:
            tally[result.outcome] += 1
        return tally

    @property
    def redeemed_amount(self) -> Decimal:
        """Positive balance delta in collateral units."""
        if self.balance is None or self.balance.delta <= 0:
            return Decimal("0")
        return self.balance.to_units(self.balance.delta)

    def summary(self) -> str:
        c = self.counts()
        return (
            f"Success={c[Outcome.SUCCESS]} Skipped={c[Outcome.SKIPPED]} "
            f"Retryable={c[Outcome.RETRYABLE]} Failed={c[Outcome.FAILED]} "
            f"Redeemed={self.redeemed_amount}"
        )
