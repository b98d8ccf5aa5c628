"""EIP-712 hashing of Safe transactions.

Two interchangeable strategies are provided: local recomputation of the typed
hash, and delegation to the Safe's own ``getTransactionHash`` view. They must
agree bit for bit; the on-chain path costs one RPC round trip but reflects the
deployed contract's interpretation exactly.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from saferedeem.redeem.models import SafeTransaction

if TYPE_CHECKING:
    from saferedeem.chain.safe_gateway import SafeGateway

DOMAIN_TYPEHASH = keccak(text="EIP712Domain(uint256 chainId,address verifyingContract)")

SAFE_TX_TYPEHASH = keccak(
    text=(
        "SafeTx(address to,uint256 value,bytes data,uint8 operation,"
        "uint256 safeTxGas,uint256 baseGas,uint256 gasPrice,"
        "address gasToken,address refundReceiver,uint256 nonce)"
    )
)

EIP712_PREFIX = b"\x19\x01"


def domain_separator(chain_id: int, safe_address: str) -> bytes:
    """keccak256(DOMAIN_TYPEHASH, chainId, verifyingContract)."""
    return keccak(
        encode(
            ["bytes32", "uint256", "address"],
            [DOMAIN_TYPEHASH, chain_id, to_checksum_address(safe_address)],
        )
    )


def safe_tx_struct_hash(safe_tx: SafeTransaction) -> bytes:
    """keccak256 of the SafeTx struct; ``data`` enters as its own keccak."""
    return keccak(
        encode(
            [
                "bytes32",
                "address",
                "uint256",
                "bytes32",
                "uint8",
                "uint256",
                "uint256",
                "uint256",
                "address",
                "address",
                "uint256",
            ],
            [
                SAFE_TX_TYPEHASH,
                safe_tx.to,
                safe_tx.value,
                keccak(safe_tx.data),
                int(safe_tx.operation),
                safe_tx.safe_tx_gas,
                safe_tx.base_gas,
                safe_tx.gas_price,
                safe_tx.gas_token,
                safe_tx.refund_receiver,
                safe_tx.nonce,
            ],
        )
    )


def compute_safe_tx_hash(chain_id: int, safe_address: str, safe_tx: SafeTransaction) -> bytes:
    """Compute the 32-byte EIP-712 hash the Safe expects owners to sign."""
    return keccak(
        EIP712_PREFIX + domain_separator(chain_id, safe_address) + safe_tx_struct_hash(safe_tx)
    )


class SafeTxHasher(ABC):
    """Strategy producing the hash to sign for a Safe transaction."""

    name: str = "hasher"

    @abstractmethod
    def compute(self, safe_tx: SafeTransaction, gateway: "SafeGateway") -> bytes:
        """Return the 32-byte Safe transaction hash."""


class LocalSafeTxHasher(SafeTxHasher):
    """Recomputes the typed hash locally; never touches the network."""

    name = "local"

    def __init__(self, chain_id: int, safe_address: str):
        self.chain_id = chain_id
        self.safe_address = to_checksum_address(safe_address)

    def compute(self, safe_tx: SafeTransaction, gateway: "SafeGateway") -> bytes:
        return compute_safe_tx_hash(self.chain_id, self.safe_address, safe_tx)


class OnChainSafeTxHasher(SafeTxHasher):
    """Asks the deployed Safe for the hash via ``getTransactionHash``."""

    name = "onchain"

    def compute(self, safe_tx: SafeTransaction, gateway: "SafeGateway") -> bytes:
        return gateway.transaction_hash(safe_tx)


def make_hasher(mode: str, chain_id: int, safe_address: str) -> SafeTxHasher:
    """Build a hasher from a configuration string (``local`` or ``onchain``)."""
    if mode == "local":
        return LocalSafeTxHasher(chain_id, safe_address)
    if mode == "onchain":
        return OnChainSafeTxHasher()
    raise ValueError(f"Unknown hash mode: {mode}")
