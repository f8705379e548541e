"""Core configuration for the TraceSentry engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TRACESENTRY_",
        case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "TraceSentry"
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── Detector windows ─────────────────────────────────────────────────
    # A lookahead window W covers the W steps after the triggering step
    # (i+1 .. i+W); a lookback L covers the L steps before it (i-L .. i-1).

    # ── Reentrancy ───────────────────────────────────────────────────────
    # Max distance between a call and a storage write when no frames exist
    reentrancy_fallback_window: int = Field(default=200, ge=1)

    # ── Unchecked calls ──────────────────────────────────────────────────
    unchecked_call_window: int = Field(default=20, ge=1)

    # ── Access control ───────────────────────────────────────────────────
    origin_control_window: int = Field(default=50, ge=1)
    max_origin_controls: int = Field(default=3, ge=1)
    delegatecall_constant_lookback: int = Field(default=10, ge=1)

    # ── Arithmetic ───────────────────────────────────────────────────────
    panic_arithmetic_lookback: int = Field(default=30, ge=1)
    panic_max_payload_bytes: int = Field(default=200, ge=36)
    max_preceding_arithmetic: int = Field(default=5, ge=0)
    arithmetic_fallback_window: int = Field(default=5, ge=1)

    # ── Reporting ────────────────────────────────────────────────────────
    top_ops_limit: int = Field(default=10, ge=0)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
