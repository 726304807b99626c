"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import re
import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    api_title: str = "Splice Bookstore API"
    api_version: str = "0.1.0"
    api_description: str = "Digital book storefront gated by on-chain payments"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "splice-bookstore"

    # Chain
    provider_rpc: str = "http://localhost:8545"
    payment_receiver_contract: str = ""
    stablecoins: str = ""  # Comma-separated ERC-20 addresses accepted 1:1 as USD
    native_token_sentinel: str = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
    native_usd_cent_rate: int = 2_200 * 100  # $2,200.00 per native unit
    native_decimals: int = 18
    token_decimals: int = 18

    # Chain listener
    start_block: int = 0
    poll_interval_seconds: float = 5.0
    block_batch_size: int = 2000
    confirmations: int = 0
    reconnect_backoff_seconds: float = 10.0

    # Downloads
    download_nonce_tracking: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def accepted_tokens(self) -> frozenset[str]:
        """Lower-cased stablecoin allowlist."""
        return frozenset(
            token.strip().lower() for token in self.stablecoins.split(",") if token.strip()
        )

    @property
    def is_sqlite(self) -> bool:
        """SQLite engines take no pool tuning arguments."""
        return self.database_url.startswith("sqlite")

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres", "sqlite")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL or SQLite URL, got: {self.database_url[:20]}..."
            )

        if self.payment_receiver_contract and not _HEX_ADDRESS.match(
            self.payment_receiver_contract
        ):
            errors.append("PAYMENT_RECEIVER_CONTRACT must be a 0x-prefixed 20-byte hex address")

        for token in self.accepted_tokens:
            if not _HEX_ADDRESS.match(token):
                errors.append(f"STABLECOINS entry is not a hex address: {token}")

        if self.native_usd_cent_rate <= 0:
            errors.append("NATIVE_USD_CENT_RATE must be positive")

        if self.start_block < 0:
            errors.append("START_BLOCK cannot be negative")

        if self.block_batch_size <= 0:
            errors.append("BLOCK_BATCH_SIZE must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()
