"""Calldata construction for CTF redemptions."""

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector

from saferedeem.chain.contracts import CTF_ADDRESS
from saferedeem.redeem.models import Operation, RedemptionCandidate, SafeTransaction

REDEEM_SIGNATURE = "redeemPositions(address,bytes32,bytes32,uint256[])"
REDEEM_SELECTOR = function_signature_to_4byte_selector(REDEEM_SIGNATURE)


def encode_redeem(candidate: RedemptionCandidate) -> bytes:
    """ABI-encode a redeemPositions call for ``candidate``.

    Argument order is fixed: collateral token, parent collection id (zeros for
    the root collection), condition id, index sets.
    """
    args = encode(
        ["address", "bytes32", "bytes32", "uint256[]"],
        [
            candidate.collateral_token,
            candidate.parent_collection_id,
            candidate.condition_bytes,
            list(candidate.index_sets),
        ],
    )
    return REDEEM_SELECTOR + args


def build_redeem_transaction(
    candidate: RedemptionCandidate,
    nonce: int,
    ctf_address: str = CTF_ADDRESS,
) -> SafeTransaction:
    """Wrap the redeem call in a zero-value CALL Safe transaction."""
    return SafeTransaction(
        to=ctf_address,
        data=encode_redeem(candidate),
        nonce=nonce,
        operation=Operation.CALL,
    )
