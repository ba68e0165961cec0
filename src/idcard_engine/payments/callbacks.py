"""Gateway callback parsing and signature verification."""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayCallback:
    """The only thing reconciliation needs out of a gateway notification."""
    gateway: str
    charge_id: str
    raw_status: str


def verify_hmac_signature(payload: bytes, signature_header: str, secret: str) -> bool:
    """HMAC-SHA256 hex digest of the raw body (Efí, PagSeguro relay)."""
    if not signature_header or not secret:
        return False
    computed = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, signature_header.strip())


def verify_pagbank_signature(payload: bytes, signature_header: str, token: str) -> bool:
    """PagBank authenticity token: SHA-256 of ``<token>-<raw body>``."""
    if not signature_header or not token:
        return False
    computed = hashlib.sha256(token.encode() + b"-" + payload).hexdigest()
    return hmac.compare_digest(computed, signature_header.strip())


def parse_efi_notification(event_data: dict[str, Any]) -> Optional[GatewayCallback]:
    """Extract the latest charge status from a resolved Efí notification.

    Efí delivers a list of status changes; the last charge entry is current.
    """
    entries = [
        e for e in event_data.get("data", [])
        if isinstance(e, dict) and e.get("type", "charge") == "charge"
    ]
    if not entries:
        logger.debug("Efí notification without charge entries")
        return None
    latest = entries[-1]
    charge_id = (latest.get("identifiers") or {}).get("charge_id")
    status = (latest.get("status") or {}).get("current")
    if charge_id is None or not status:
        logger.warning("Efí notification missing charge_id/status")
        return None
    return GatewayCallback(gateway="efi", charge_id=str(charge_id), raw_status=str(status))


def parse_pagbank_order(event_data: dict[str, Any]) -> Optional[GatewayCallback]:
    """Extract order id and charge status from a PagBank order webhook."""
    order_id = event_data.get("id") or event_data.get("reference_id")
    charges = event_data.get("charges")
    charge = charges[0] if isinstance(charges, list) and charges else {}
    status = charge.get("status") or event_data.get("status")
    if not order_id or not status:
        logger.warning("PagBank webhook missing order id/status")
        return None
    return GatewayCallback(gateway="pagbank", charge_id=str(order_id), raw_status=str(status))


def parse_pagseguro_transaction(event_data: dict[str, Any]) -> Optional[GatewayCallback]:
    """Extract code and numeric status from a relayed PagSeguro transaction."""
    code = event_data.get("code")
    status = event_data.get("status")
    if not code or status is None:
        logger.warning("PagSeguro transaction missing code/status")
        return None
    return GatewayCallback(gateway="pagseguro", charge_id=str(code), raw_status=str(status))


PARSERS = {
    "efi": parse_efi_notification,
    "pagbank": parse_pagbank_order,
    "pagseguro": parse_pagseguro_transaction,
}

VERIFIERS = {
    "efi": verify_hmac_signature,
    "pagbank": verify_pagbank_signature,
    "pagseguro": verify_hmac_signature,
}
