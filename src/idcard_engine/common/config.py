"""IDCard-Engine configuration via pydantic-settings."""

import json
import warnings
from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "hmac_key": "insecure-hmac-key-change-me",
    "api_key": "insecure-service-key-change-me",
}


class IdCardSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="IDCARD_")

    environment: str = "development"
    log_level: str = "INFO"

    # Audit signing key. hmac_keys is a JSON keyring mapping version -> key,
    # e.g. '{"0": "old-key", "1": "new-key"}'. When empty, hmac_key is version 0.
    hmac_key: str = "insecure-hmac-key-change-me"
    hmac_keys: str = ""

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/idcard.db"

    # API
    api_title: str = "IDCard-Engine"
    api_version: str = "0.1.0"
    api_key: str = "insecure-service-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Bounds for every call leaving the process (seconds)
    external_timeout: float = 10.0
    snapshot_timeout: float = 5.0

    # Payment gateways
    gateway_base_urls: dict[str, str] = {}
    gateway_tokens: dict[str, str] = {}
    gateway_webhook_secrets: dict[str, str] = {}
    default_gateways: list[str] = ["pagbank", "efi"]

    # Object storage
    storage_base_url: str = ""
    storage_token: str = ""

    # Cards and documents
    card_validity_days: int = 365
    physical_upgrade_price: Decimal = Decimal("24.00")
    rejected_document_retention_days: int = 90
    purge_batch_size: int = 50

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    @property
    def hmac_keyring(self) -> dict[int, str]:
        """Return the audit HMAC keyring as {version_int: key_str}."""
        if self.hmac_keys:
            try:
                raw = json.loads(self.hmac_keys)
            except (json.JSONDecodeError, TypeError) as exc:
                raise ValueError(
                    f"IDCARD_HMAC_KEYS must be valid JSON (e.g. '{{\"0\": \"key\"}}'), got: {self.hmac_keys!r}"
                ) from exc
            return {int(k): v for k, v in raw.items()}
        return {0: self.hmac_key}

    @property
    def current_hmac_key(self) -> str:
        """Return the HMAC key for the current (highest) version."""
        ring = self.hmac_keyring
        return ring[max(ring.keys())]

    @property
    def unsigned_gateways(self) -> list[str]:
        """Default gateways whose callbacks could not be signature-checked."""
        return [g for g in self.default_gateways if not self.gateway_webhook_secrets.get(g)]

    def accepts_unsigned_callbacks(self) -> bool:
        return self.environment == "development"

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"IDCARD_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}."
            )

        unsigned = self.unsigned_gateways
        if self.environment != "development" and unsigned:
            raise RuntimeError(
                f"Webhook secrets missing in '{self.environment}' environment for: "
                f"{', '.join(unsigned)}. Set IDCARD_GATEWAY_WEBHOOK_SECRETS."
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys, set IDCARD_HMAC_KEY and IDCARD_API_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> IdCardSettings:
    settings = IdCardSettings()
    settings.validate_for_production()
    return settings
