"""Application settings using Pydantic."""

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RPC_URLS = (
    "https://polygon-rpc.com,"
    "https://rpc.ankr.com/polygon,"
    "https://polygon.llamarpc.com,"
    "https://1rpc.io/matic,"
    "https://polygon-mainnet.public.blastapi.io"
)

SUBMISSION_MODES = ("auto", "direct", "relayer")
HASH_MODES = ("local", "onchain")


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Wallet (SecretStr prevents accidental logging)
    wallet_private_key: SecretStr = SecretStr("")
    polymarket_wallet_address: str = ""  # Safe proxy holding the positions

    # Chain
    polygon_rpc_urls: str = DEFAULT_RPC_URLS
    chain_id: int = 137
    ctf_address: str = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"
    collateral_token_address: str = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"  # USDC.e

    # Builder relayer
    relayer_url: str = "https://relayer-v2.polymarket.com"
    polymarket_builder_api_key: SecretStr = SecretStr("")
    polymarket_builder_secret: SecretStr = SecretStr("")
    polymarket_builder_passphrase: SecretStr = SecretStr("")
    relayer_timeout_seconds: float = Field(default=30.0, gt=0, le=120)
    relayer_settle_seconds: float = Field(default=5.0, ge=0, le=60)

    # Redemption loop
    redeem_submission_mode: str = "auto"
    redeem_hash_mode: str = "local"
    redeem_cooldown_seconds: float = Field(default=2.0, ge=0, le=30)
    redeem_max_candidates: int = Field(default=8, ge=1, le=500)
    redeem_candidate_attempts: int = Field(default=3, ge=1, le=10)

    # RPC resilience
    rpc_probe_timeout_seconds: float = Field(default=5.0, gt=0, le=60)
    rpc_probe_backoff_seconds: float = Field(default=0.5, ge=0, le=10)
    rpc_call_timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    rpc_retry_attempts: int = Field(default=3, ge=1, le=10)
    rpc_retry_delay_seconds: float = Field(default=2.0, ge=0, le=60)

    # Direct execution
    direct_gas_limit: int = Field(default=400_000, ge=21_000)
    receipt_timeout_seconds: int = Field(default=120, ge=5, le=900)

    # Application
    log_level: str = "INFO"

    def get_rpc_urls(self) -> list[str]:
        """Get ordered list of RPC endpoints."""
        return [u.strip() for u in self.polygon_rpc_urls.split(",") if u.strip()]

    def resolve_submission_mode(self) -> str:
        """Resolve ``auto`` to a concrete submission mode."""
        mode = self.redeem_submission_mode.strip().lower()
        if mode not in SUBMISSION_MODES:
            raise ValueError(f"Unknown submission mode: {self.redeem_submission_mode}")
        if mode == "auto":
            return "relayer" if self.has_builder_credentials else "direct"
        return mode

    @property
    def has_web3_credentials(self) -> bool:
        """Check if a signing key is configured."""
        return bool(self.wallet_private_key.get_secret_value())

    @property
    def has_builder_credentials(self) -> bool:
        """Check if Builder API credentials are configured for gasless transactions."""
        return bool(
            self.polymarket_builder_api_key.get_secret_value()
            and self.polymarket_builder_secret.get_secret_value()
            and self.polymarket_builder_passphrase.get_secret_value()
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
