"""Configuration surface for the settlement service."""
from __future__ import annotations

import os
import warnings
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    CIRCLE_ATTESTATION_API_SANDBOX_URL,
    CIRCLE_ATTESTATION_API_URL,
    DEFAULT_RPC_URLS,
    USDC_ADDRESSES,
)
from .models import Chain

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./tap_settlement.db"


class SettlementSettings(BaseSettings):
    """Settings for the settlement core, read from TAP_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TAP_",
        env_file=".env",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False

    # Database
    database_url: str = Field(default="", validate_default=True)
    sql_echo: bool = False

    # Chain execution mode
    chain_mode: Literal["simulated", "live"] = "simulated"

    # RPC endpoints
    solana_rpc_url: str = DEFAULT_RPC_URLS[Chain.SOLANA]
    ethereum_rpc_url: str = DEFAULT_RPC_URLS[Chain.ETHEREUM]
    base_rpc_url: str = DEFAULT_RPC_URLS[Chain.BASE]

    # USDC token contract / mint
    solana_usdc_mint: str = USDC_ADDRESSES[Chain.SOLANA]
    ethereum_usdc_address: str = USDC_ADDRESSES[Chain.ETHEREUM]
    base_usdc_address: str = USDC_ADDRESSES[Chain.BASE]

    # Custodial wallets that receive deposits and minted funds
    solana_custodial_address: Optional[str] = None
    ethereum_custodial_address: Optional[str] = None
    base_custodial_address: Optional[str] = None

    # Circle CCTP
    circle_sandbox: bool = False
    circle_attestation_url: Optional[str] = None
    circle_api_timeout_seconds: float = 30.0

    # Settlement behaviour
    simulated_attestation_polls: int = 0
    mint_retry_after_seconds: int = 300
    stalled_attestation_seconds: int = 3600
    runner_batch_size: int = 50

    @field_validator("database_url", mode="before")
    @classmethod
    def set_database_defaults(cls, v: Optional[str]) -> str:
        """Fall back to DATABASE_URL and select an async driver."""
        if not v:
            v = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

        # Heroku/Neon style URLs need the asyncpg driver
        if v.startswith("postgres://"):
            v = "postgresql+asyncpg://" + v[len("postgres://"):]
        elif v.startswith("postgresql://"):
            v = "postgresql+asyncpg://" + v[len("postgresql://"):]
        elif v.startswith("sqlite:///"):
            v = "sqlite+aiosqlite:///" + v[len("sqlite:///"):]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{v}'")
        return level

    @field_validator("simulated_attestation_polls", "mint_retry_after_seconds", "stalled_attestation_seconds")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("runner_batch_size")
    @classmethod
    def positive_batch(cls, v: int) -> int:
        if v < 1:
            raise ValueError("runner_batch_size must be at least 1")
        return v

    @model_validator(mode="after")
    def warn_on_unsafe_production(self) -> "SettlementSettings":
        if self.environment == "prod":
            if self.database_url.startswith("sqlite"):
                warnings.warn(
                    "SQLite is not recommended for production. "
                    "Please use PostgreSQL by setting DATABASE_URL environment variable.",
                    RuntimeWarning,
                )
            if self.chain_mode == "simulated":
                warnings.warn(
                    "chain_mode is 'simulated' in production; no funds will move.",
                    RuntimeWarning,
                )
        return self

    @property
    def attestation_url(self) -> str:
        if self.circle_attestation_url:
            return self.circle_attestation_url
        return CIRCLE_ATTESTATION_API_SANDBOX_URL if self.circle_sandbox else CIRCLE_ATTESTATION_API_URL

    def rpc_url(self, chain: Chain) -> str:
        return getattr(self, f"{chain.value.lower()}_rpc_url")

    def usdc_address(self, chain: Chain) -> str:
        if chain is Chain.SOLANA:
            return self.solana_usdc_mint
        return getattr(self, f"{chain.value.lower()}_usdc_address")

    def custodial_address(self, chain: Chain) -> Optional[str]:
        """Custodial wallet address on chain, or None when unset."""
        value = getattr(self, f"{chain.value.lower()}_custodial_address")
        return value or None


@lru_cache
def load_settings(env_file: str | None = None) -> SettlementSettings:
    """Load settings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return SettlementSettings(_env_file=env_path)


__all__ = ["DEFAULT_DATABASE_URL", "SettlementSettings", "load_settings"]
