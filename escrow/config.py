"""Ledger settings loaded from the environment."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment configuration for the voucher escrow ledger."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="ESCROW_")

    app_name: str = Field(default="voucher-escrow")
    program_id: Optional[str] = Field(
        default=None,
        description="Optional deployment namespace mixed into every derived address.",
    )

    max_maintainers: int = Field(default=10, ge=1)
    max_voucher_id_len: int = Field(default=64, ge=1, le=64)
    max_metadata_len: int = Field(default=512, ge=0)
    voucher_ttl_seconds: int = Field(default=30 * 24 * 60 * 60, ge=1)

    attestation_key: str = Field(
        default="dev-attestation-key-change-me-in-production",
        description="Shared secret used by the identity bridge to sign recipient proofs.",
    )
    attestation_tolerance_seconds: int = Field(default=300, ge=1)

    faucet_enabled: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def validate_attestation_key(self) -> "Settings":
        if len(self.attestation_key.encode()) < 16:
            raise ValueError("ESCROW_ATTESTATION_KEY must be at least 16 bytes.")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    logger = logging.getLogger("escrow")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(settings.log_level.upper())
