"""Owner signatures over Safe transaction hashes."""

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from saferedeem.redeem.models import SafeSignature

# Safe treats v > 30 as an eth_sign signature and recovers against
# keccak("\x19Ethereum Signed Message:\n32" + hash) with v - 4.
ETH_SIGN_V_OFFSET = 4


def pack_signature(r: int, s: int, v: int) -> SafeSignature:
    """Adjust a raw ECDSA recovery id for the Safe's eth_sign type."""
    if v in (0, 1):
        v += 27
    if v not in (27, 28):
        raise ValueError(f"Unexpected recovery id: {v}")
    return SafeSignature(r=r, s=s, v=v + ETH_SIGN_V_OFFSET)


class SafeSigner:
    """Signs Safe transaction hashes with an owner key."""

    def __init__(self, private_key: str):
        if not private_key:
            raise ValueError("Wallet private key is required")
        self._account: LocalAccount = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def account(self) -> LocalAccount:
        return self._account

    def sign(self, safe_tx_hash: bytes) -> SafeSignature:
        """Sign a 32-byte Safe hash, eth_sign style."""
        if len(safe_tx_hash) != 32:
            raise ValueError("Safe transaction hash must be 32 bytes")
        signed = self._account.sign_message(encode_defunct(primitive=safe_tx_hash))
        return pack_signature(signed.r, signed.s, signed.v)
