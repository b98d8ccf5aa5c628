"""Contract calls against one RPC connection.

Every call goes through ``_translate_errors`` so web3 and transport
exceptions reach the engine as ``ChainRevert`` or ``TransientNetworkError``.
"""

import functools
import logging
from collections.abc import Callable
from typing import TypeVar

import requests
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.types import TxParams

from saferedeem.chain.contracts import CTF_ABI, CTF_ADDRESS, ERC20_ABI, SAFE_ABI
from saferedeem.chain.rpc_pool import call_with_timeout
from saferedeem.redeem.errors import ChainRevert, TransientNetworkError
from saferedeem.redeem.models import SafeSignature, SafeTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

CALL_TIMEOUT_SECONDS = 30.0

_REVERT_MARKERS = ("revert",)


def _translate_errors(method: Callable[..., T]) -> Callable[..., T]:
    @functools.wraps(method)
    def wrapper(*args, **kwargs) -> T:
        try:
            return method(*args, **kwargs)
        except (ChainRevert, TransientNetworkError):
            raise
        except ContractLogicError as e:
            raise ChainRevert(str(e)) from e
        except TimeExhausted as e:
            raise TransientNetworkError(f"Receipt not available: {e}") from e
        except (requests.exceptions.RequestException, ConnectionError, TimeoutError) as e:
            raise TransientNetworkError(str(e)) from e
        except Web3Exception as e:
            # Some providers surface reverts as plain JSON-RPC errors
            if any(marker in str(e).lower() for marker in _REVERT_MARKERS):
                raise ChainRevert(str(e)) from e
            raise

    return wrapper


class SafeGateway:
    """Reads and writes the Safe, CTF and collateral contracts."""

    def __init__(
        self,
        w3: Web3,
        safe_address: str,
        ctf_address: str = CTF_ADDRESS,
        call_timeout: float = CALL_TIMEOUT_SECONDS,
    ):
        self.w3 = w3
        self.safe_address = Web3.to_checksum_address(safe_address)
        self.safe_contract: Contract = w3.eth.contract(address=self.safe_address, abi=SAFE_ABI)
        self.ctf_contract: Contract = w3.eth.contract(
            address=Web3.to_checksum_address(ctf_address), abi=CTF_ABI
        )
        self._call_timeout = call_timeout

    def _bounded(self, fn: Callable[[], T]) -> T:
        return call_with_timeout(fn, self._call_timeout)

    @_translate_errors
    def safe_nonce(self) -> int:
        """Current Safe nonce, read from the contract."""
        return self._bounded(self.safe_contract.functions.nonce().call)

    @_translate_errors
    def transaction_hash(self, safe_tx: SafeTransaction) -> bytes:
        """Safe.getTransactionHash for ``safe_tx``."""
        fn = self.safe_contract.functions.getTransactionHash(*safe_tx.hash_args())
        return bytes(self._bounded(fn.call))

    @_translate_errors
    def payout_denominator(self, condition_id: bytes) -> int:
        """Zero until the condition is resolved."""
        return self._bounded(self.ctf_contract.functions.payoutDenominator(condition_id).call)

    @_translate_errors
    def balance_of(self, token: str, holder: str) -> int:
        """ERC-20 balance in raw token units."""
        erc20 = self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
        holder = Web3.to_checksum_address(holder)
        return self._bounded(erc20.functions.balanceOf(holder).call)

    @_translate_errors
    def simulate_exec(
        self, safe_tx: SafeTransaction, signature: SafeSignature, sender: str
    ) -> None:
        """eth_call execTransaction; raises ChainRevert if it would fail."""
        fn = self.safe_contract.functions.execTransaction(*safe_tx.exec_args(signature.packed))
        ok = self._bounded(lambda: fn.call({"from": sender}))
        if not ok:
            raise ChainRevert("execTransaction simulation returned false")

    @_translate_errors
    def send_exec(
        self,
        safe_tx: SafeTransaction,
        signature: SafeSignature,
        account: LocalAccount,
        gas_limit: int,
    ) -> str:
        """Sign and broadcast execTransaction from ``account``; returns the tx hash."""
        fn = self.safe_contract.functions.execTransaction(*safe_tx.exec_args(signature.packed))
        tx: TxParams = fn.build_transaction(
            {
                "from": account.address,
                "gas": gas_limit,
                "gasPrice": self.w3.eth.gas_price,
                "nonce": self.w3.eth.get_transaction_count(account.address),
                "chainId": self.w3.eth.chain_id,
            }
        )
        signed = account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Safe transaction sent: {tx_hash_hex}")
        return tx_hash_hex

    @_translate_errors
    def wait_for_status(self, tx_hash: str, timeout: int) -> int:
        """Wait for one confirmation and return the receipt status."""
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        return int(receipt["status"])
