"""Build a RedemptionEngine from application settings."""

import logging

from saferedeem.chain.rpc_pool import RpcEndpointPool
from saferedeem.chain.safe_gateway import SafeGateway
from saferedeem.config.settings import Settings, get_settings
from saferedeem.redeem.engine import RedemptionEngine
from saferedeem.redeem.relayer_client import RelayerClient
from saferedeem.redeem.safe_hash import make_hasher
from saferedeem.redeem.signer import SafeSigner
from saferedeem.redeem.submission import (
    DirectSubmitter,
    DryRunSubmitter,
    RelayerSubmitter,
    SubmissionStrategy,
)

logger = logging.getLogger(__name__)


def make_relayer_client(settings: Settings) -> RelayerClient:
    return RelayerClient(
        api_key=settings.polymarket_builder_api_key.get_secret_value(),
        api_secret=settings.polymarket_builder_secret.get_secret_value(),
        api_passphrase=settings.polymarket_builder_passphrase.get_secret_value(),
        base_url=settings.relayer_url,
        timeout=settings.relayer_timeout_seconds,
    )


def make_strategy(
    mode: str, signer: SafeSigner, settings: Settings, execute: bool = True
) -> SubmissionStrategy:
    """Pick the submission strategy; ``execute=False`` always simulates."""
    if not execute:
        return DryRunSubmitter(signer.address)
    if mode == "direct":
        return DirectSubmitter(
            signer.account,
            gas_limit=settings.direct_gas_limit,
            receipt_timeout=settings.receipt_timeout_seconds,
        )
    if mode == "relayer":
        return RelayerSubmitter(
            make_relayer_client(settings),
            signer_address=signer.address,
            safe_address=settings.polymarket_wallet_address,
            settle_delay=settings.relayer_settle_seconds,
        )
    raise ValueError(f"Unknown submission mode: {mode}")


def create_engine(
    settings: Settings | None = None,
    execute: bool = False,
    mode: str | None = None,
    hash_mode: str | None = None,
) -> RedemptionEngine:
    """Wire pool, signer, hasher and strategy together.

    Args:
        settings: Settings to use (defaults to cached environment settings)
        execute: Broadcast transactions; otherwise simulate only
        mode: Submission mode override (auto, direct, relayer)
        hash_mode: Hash mode override (local, onchain)
    """
    settings = settings or get_settings()

    if not settings.has_web3_credentials:
        raise ValueError("Wallet private key is required")
    if not settings.polymarket_wallet_address:
        raise ValueError("Safe proxy address (POLYMARKET_WALLET_ADDRESS) is required")

    if mode and mode != "auto":
        resolved_mode = mode
    else:
        resolved_mode = settings.resolve_submission_mode()

    signer = SafeSigner(settings.wallet_private_key.get_secret_value())
    strategy = make_strategy(resolved_mode, signer, settings, execute=execute)
    hasher = make_hasher(
        hash_mode or settings.redeem_hash_mode,
        settings.chain_id,
        settings.polymarket_wallet_address,
    )
    pool = RpcEndpointPool(
        settings.get_rpc_urls(),
        probe_timeout=settings.rpc_probe_timeout_seconds,
        backoff=settings.rpc_probe_backoff_seconds,
    )

    logger.info(
        f"Engine: signer={signer.address} safe={settings.polymarket_wallet_address} "
        f"strategy={strategy.name} hash={hasher.name}"
    )

    return RedemptionEngine(
        pool=pool,
        signer=signer,
        strategy=strategy,
        hasher=hasher,
        safe_address=settings.polymarket_wallet_address,
        collateral_token=settings.collateral_token_address,
        ctf_address=settings.ctf_address,
        cooldown=settings.redeem_cooldown_seconds,
        max_candidates=settings.redeem_max_candidates,
        candidate_attempts=settings.redeem_candidate_attempts,
        retry_attempts=settings.rpc_retry_attempts,
        retry_delay=settings.rpc_retry_delay_seconds,
        gateway_factory=lambda w3: SafeGateway(
            w3,
            settings.polymarket_wallet_address,
            settings.ctf_address,
            call_timeout=settings.rpc_call_timeout_seconds,
        ),
    )
