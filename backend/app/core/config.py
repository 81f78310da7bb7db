from dataclasses import replace
from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .networks import NetworkConfig, NetworkName, get_network_config

_PUBLIC_RETRY_BACKOFF = (2.0, 4.0, 8.0)
_KEYED_RETRY_BACKOFF = (1.0, 2.0, 4.0)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    network: NetworkName = Field(
        default=NetworkName.MAINNET,
        description="Deployment environment the replica follows (mainnet|testnet)",
    )
    database_url: str = Field(
        default="sqlite:///../data/oracle_cache.db",
        description="SQLAlchemy compatible database URL for the market cache",
    )
    tonapi_key: str | None = Field(
        default=None,
        description="Elevated-access API key; unlocks the faster reconciliation profile",
    )
    tonapi_base_url: str | None = Field(
        default=None,
        description="Optional override for the network's default ledger API URL",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every ledger API request",
        gt=0,
    )
    reconcile_batch_size_public: int = Field(
        default=2,
        description="Concurrent ledger requests per batch without an API key",
        ge=1,
    )
    reconcile_batch_delay_public: float = Field(
        default=2.5,
        description="Seconds to wait between batches without an API key",
        ge=0,
    )
    reconcile_call_delay_public: float = Field(
        default=0.5,
        description="Seconds between sequential per-market detail calls without an API key",
        ge=0,
    )
    reconcile_batch_size_keyed: int = Field(
        default=10,
        description="Concurrent ledger requests per batch with an API key",
        ge=1,
    )
    reconcile_batch_delay_keyed: float = Field(
        default=1.1,
        description="Seconds to wait between batches with an API key",
        ge=0,
    )
    reconcile_call_delay_keyed: float = Field(
        default=0.05,
        description="Seconds between sequential per-market detail calls with an API key",
        ge=0,
    )
    ledger_retry_backoff_seconds: list[float] | tuple[float, ...] | str | None = Field(
        default=None,
        description=(
            "Comma-separated list or array of backoff delays (seconds) between ledger "
            "request retries; defaults depend on whether an API key is configured"
        ),
    )
    progress_clear_delay_seconds: float = Field(
        default=2.0,
        description="Seconds after a finished pass before progress resets to idle",
        ge=0,
    )
    optimistic_write_ttl_seconds: int = Field(
        default=600,
        description="Seconds an unconfirmed optimistic cache write survives before it is rolled back",
        ge=1,
    )
    token_total_supply: int = Field(
        default=100_000_000,
        description="Total governance token supply used for the veto threshold",
        gt=0,
    )

    @field_validator("ledger_retry_backoff_seconds", mode="before")
    @classmethod
    def _parse_retry_backoff(cls, value: Any) -> list[float] | None:
        if value in (None, "", []):
            return None
        if isinstance(value, str):
            tokens = [token.strip() for token in value.split(",") if token.strip()]
            if not tokens:
                raise ValueError("LEDGER_RETRY_BACKOFF_SECONDS must contain at least one value")
            value = tokens
        if isinstance(value, (list, tuple)):
            backoff: list[float] = []
            for item in value:
                try:
                    delay = float(item)
                except (TypeError, ValueError) as exc:
                    raise ValueError("LEDGER_RETRY_BACKOFF_SECONDS entries must be numeric") from exc
                if delay < 0:
                    raise ValueError("LEDGER_RETRY_BACKOFF_SECONDS entries must not be negative")
                backoff.append(delay)
            return backoff
        raise ValueError(
            "LEDGER_RETRY_BACKOFF_SECONDS must be provided as a comma-separated string or list of numbers"
        )

    @field_validator("tonapi_key", "tonapi_base_url", mode="after")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @property
    def has_elevated_access(self) -> bool:
        return bool(self.tonapi_key)

    @property
    def network_config(self) -> NetworkConfig:
        config = get_network_config(self.network)
        if self.tonapi_base_url:
            config = replace(config, tonapi_url=self.tonapi_base_url.rstrip("/"))
        return config

    @property
    def ledger_retry_backoff_schedule(self) -> tuple[float, ...]:
        if self.ledger_retry_backoff_seconds:
            return tuple(float(value) for value in self.ledger_retry_backoff_seconds)
        return _KEYED_RETRY_BACKOFF if self.has_elevated_access else _PUBLIC_RETRY_BACKOFF

    def ledger_headers(self) -> dict[str, str]:
        if self.tonapi_key:
            return {"Authorization": f"Bearer {self.tonapi_key}"}
        return {}


@lru_cache
def get_settings() -> Settings:
    return Settings()
