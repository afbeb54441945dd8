from pathlib import Path
from typing import Any

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
        """Normalise values that are easy to get subtly wrong in an env file."""

        super().model_post_init(__context)

        object.__setattr__(self, "relay_url", self.relay_url.rstrip("/"))
        object.__setattr__(self, "blocks_api_url", self.blocks_api_url.rstrip("/"))

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Chain node
    eth_rpc_url: str = Field(
        default="http://127.0.0.1:8545",
        description="JSON-RPC endpoint of the execution client used for chain state",
        validation_alias=AliasChoices("eth_rpc_url", "ETHEREUM_RPC_URL"),
    )
    block_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="How often the block subscription polls eth_blockNumber",
    )
    nonce_block_tag: str = Field(
        default="latest",
        description="Block tag used when reading account nonces while signing bundles",
    )

    # Relay
    relay_url: str = Field(
        default="https://relay.flashbots.net",
        description="Bundle relay JSON-RPC endpoint",
        validation_alias=AliasChoices("relay_url", "FLASHBOTS_RPC_URL"),
    )
    relay_signing_key: str = Field(
        default="",
        description="Private key used only to sign relay requests (reputation identity, holds no funds)",
    )
    relay_rate_limit_retries: int = Field(
        default=3,
        ge=0,
        description="How many times a rate-limited relay call is retried after backing off",
    )
    relay_rate_limit_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Backoff used when the relay rate-limits without a Retry-After header",
    )

    # Blocks index
    blocks_api_url: str = Field(
        default="https://blocks.flashbots.net",
        description="Base URL of the blocks index used for conflict diagnosis",
    )

    # Timeouts
    request_timeout_seconds: int = Field(default=30, description="HTTP request timeout")
    bundle_wait_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Default deadline for BundleSubmission.wait()",
    )

    @property
    def has_relay_signing_key(self) -> bool:
        return bool(self.relay_signing_key)


# Global settings instance
settings = Settings()
