"""
Application settings for CertAnchor Backend.
Values are read from environment variables and an optional .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Runtime configuration, loaded once and passed to constructors explicitly."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service
    app_name: str = "CertAnchor Backend"
    app_url: str = Field("http://localhost:3000", description="Public base URL used in verification links")
    log_level: str = "INFO"
    admin_api_key: Optional[str] = Field(None, description="Shared key for admin endpoints; unset disables them")
    run_embedded_worker: bool = False

    # Database
    mongodb_url: str = "mongodb://localhost:27017"
    database_name: str = "certanchor"

    # Certificate issuance
    certificate_secret: str = Field("", description="Secret mixed into verification codes")
    organization_name: str = "CertAnchor Academy"
    organization_id: str = "certanchor"
    organization_website: str = "https://certanchor.example"
    passing_score: float = 80
    speed_learner_seconds: int = 1800

    # Blockchain
    blockchain_enabled: bool = True
    anchor_mode: str = Field("simulated", description="'simulated' or 'live'")
    blockchain_network: str = "amoy"
    blockchain_rpc_url: Optional[str] = None
    certificate_contract_address: Optional[str] = None
    blockchain_private_key: Optional[str] = None
    default_recipient_address: Optional[str] = None
    min_wallet_balance: float = 0.1
    rpc_timeout_seconds: float = 20.0
    mint_timeout_seconds: float = 60.0
    receipt_timeout_seconds: int = 120
    gas_limit: int = 500000

    # Content store (IPFS via Pinata, or MongoDB when no key is set)
    pinata_api_key: Optional[str] = None
    pinata_secret_api_key: Optional[str] = None
    pinata_api_url: str = "https://api.pinata.cloud"
    ipfs_gateway: str = "https://gateway.pinata.cloud/ipfs"
    content_store_timeout_seconds: float = 30.0

    # Retry queue
    queue_max_attempts: int = 5
    queue_retry_delay_seconds: int = 60
    queue_lease_seconds: int = 300
    queue_poll_interval: float = 2.0
    queue_max_idle_interval: float = 30.0
    queue_rate_limit_per_hour: int = 50
    queue_cleanup_days: int = 30
    queue_cleanup_interval_hours: int = 6

    # Queue priorities
    priority_normal: int = 0
    priority_not_authorized: int = 0
    priority_wallet_not_ready: int = -5
    priority_manual: int = 5
    priority_not_authorized_penalty: int = 5
    priority_high_score_threshold: float = 95
    priority_high_score_boost: int = 10

    @property
    def is_live(self) -> bool:
        return self.anchor_mode.lower() == "live"

    def validate_startup(self) -> None:
        """
        Fail fast on settings the service cannot run without.

        Raises:
            ConfigurationError: If a required value is missing
        """
        if not self.certificate_secret:
            raise ConfigurationError("CERTIFICATE_SECRET must be set")

        if self.anchor_mode.lower() not in ("simulated", "live"):
            raise ConfigurationError(f"Unknown ANCHOR_MODE: {self.anchor_mode}")

        if self.blockchain_enabled and self.is_live:
            if not self.certificate_contract_address:
                raise ConfigurationError("CERTIFICATE_CONTRACT_ADDRESS is required in live mode")
            if not self.blockchain_private_key:
                raise ConfigurationError("BLOCKCHAIN_PRIVATE_KEY is required in live mode")


@lru_cache()
def get_settings() -> Settings:
    """Load settings from the environment once per process."""
    return Settings()
