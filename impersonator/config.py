from pathlib import Path
from typing import Any, List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Keep the configured gas bounds and the default method consistent."""

        super().model_post_init(__context)

        if self.min_gas_limit > self.max_gas_limit:
            raise ValueError("min_gas_limit cannot exceed max_gas_limit")
        for name in ("default_execution_method", "bridge_execution_method"):
            object.__setattr__(self, name, getattr(self, name).strip().upper())
        object.__setattr__(self, "owner_source", self.owner_source.strip().lower())
        if self.owner_source not in ("static", "safe"):
            raise ValueError("owner_source must be 'static' or 'safe'")

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Network
    rpc_url: str = Field(
        default="",
        validation_alias=AliasChoices("rpc_url", "impersonator_rpc_url"),
        description="JSON-RPC endpoint used for nonce, gas and balance queries",
    )
    allow_insecure_local_rpc: bool = Field(
        default=False,
        description="Permit http:// RPC URLs pointing at localhost (forked dev nodes)",
    )
    supported_network_ids: List[int] = Field(
        default_factory=lambda: [1, 5, 137, 42161, 10, 8453, 100, 56, 250, 43114],
        description="Chain IDs accepted by validate_network_id",
    )

    # Rate Limiting
    rate_limit_max_requests: int = Field(default=10, description="Transactions per sender per window")
    rate_limit_window_ms: int = Field(default=60_000, description="Sliding window length")

    # Message Replay Protection
    message_replay_window_ms: int = Field(default=1_000, description="Reject repeated (id, method) within this window")
    message_timestamp_retention_ms: int = Field(default=300_000, description="Drop replay keys older than this")
    message_timestamp_cleanup_interval_ms: int = Field(default=300_000, description="Replay key purge interval")

    # Transaction bounds
    transaction_expiration_ms: int = Field(default=3_600_000, description="Request TTL (1 hour)")
    max_transaction_data_length: int = Field(default=10_000, description="Max encoded calldata characters")
    max_transaction_value_eth: int = Field(default=1_000_000, description="Max value in whole native tokens")
    min_gas_limit: int = Field(default=21_000, description="Minimum execution gas")
    max_gas_limit: int = Field(default=10_000_000, description="Gas ceiling for limits and estimates")
    min_gas_price_gwei: int = Field(default=1, description="Lowest accepted gas price")
    max_gas_price_gwei: int = Field(default=1_000, description="Highest accepted gas price")
    address_max_length: int = Field(default=42, description="Max address string length")

    # Timeouts
    gas_estimation_timeout_ms: int = Field(default=15_000, description="Gas estimation timeout")
    token_balance_timeout_ms: int = Field(default=10_000, description="Balance lookup timeout")
    relayer_request_timeout_ms: int = Field(default=30_000, description="Relayer POST timeout")

    # Approvals / execution
    approval_lock_grace_ms: int = Field(
        default=100,
        description="How long the per-transaction approval lock stays held after an update",
    )
    default_execution_method: str = Field(
        default="SIMULATION",
        description="Execution method for requests that do not name one",
    )
    bridge_execution_method: str = Field(
        default="",
        description="Execution method for requests created by the embedded app; empty uses the default method",
    )

    # Wallet
    impersonated_address: str = Field(
        default="",
        description="Account the node signs for; enables DIRECT_ONCHAIN execution",
    )
    owner_source: str = Field(
        default="static",
        description="'static' for owners registered over the API, 'safe' to read them from the wallet contract",
    )

    # Bridge
    bridge_protocol_version: str = Field(default="1.0.0", description="Version stamped on response envelopes")
    bridge_host_origin: str = Field(
        default="http://localhost:3000",
        description="Origin of the hosting page, reported to embedded apps and used when no app origin is known",
    )


settings = Settings()
