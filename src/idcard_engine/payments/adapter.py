"""Payment reconciliation — map gateway status vocabularies onto PaymentStatus.

Each gateway speaks its own dialect. The tables below are the only place
that knows them. A code missing from a table maps to ``processing``: an
unrecognized state must never grant eligibility.
"""

import logging

from idcard_engine.common.exceptions import ValidationError
from idcard_engine.students.enums import PaymentStatus

logger = logging.getLogger(__name__)

P = PaymentStatus

EFI_STATUS_MAP: dict[str, PaymentStatus] = {
    "new": P.PENDING,
    "waiting": P.PROCESSING,
    "paid": P.APPROVED,
    "settled": P.APPROVED,
    "unpaid": P.REJECTED,
    "canceled": P.REJECTED,
    "refunded": P.REFUNDED,
}

PAGBANK_STATUS_MAP: dict[str, PaymentStatus] = {
    "WAITING": P.PENDING,
    "AUTHORIZED": P.PROCESSING,
    "IN_ANALYSIS": P.PROCESSING,
    "PAID": P.APPROVED,
    "DECLINED": P.REJECTED,
    "CANCELED": P.REJECTED,
}

# Legacy PagSeguro transaction codes.
PAGSEGURO_STATUS_MAP: dict[str, PaymentStatus] = {
    "1": P.PENDING,      # aguardando pagamento
    "2": P.PROCESSING,   # em análise
    "3": P.APPROVED,     # paga
    "4": P.APPROVED,     # disponível
    "5": P.PROCESSING,   # em disputa
    "6": P.REFUNDED,     # devolvida
    "7": P.REJECTED,     # cancelada
}


def _efi_key(raw: str) -> str:
    return raw.strip().lower()


def _pagbank_key(raw: str) -> str:
    return raw.strip().upper()


def _pagseguro_key(raw: str) -> str:
    return raw.strip()


GATEWAY_TABLES = {
    "efi": (EFI_STATUS_MAP, _efi_key),
    "pagbank": (PAGBANK_STATUS_MAP, _pagbank_key),
    "pagseguro": (PAGSEGURO_STATUS_MAP, _pagseguro_key),
}

SUPPORTED_GATEWAYS: frozenset[str] = frozenset(GATEWAY_TABLES)


def normalize(gateway_name: str, raw_status: str | int | None) -> PaymentStatus:
    """Translate a gateway's raw status into the internal enum."""
    entry = GATEWAY_TABLES.get((gateway_name or "").lower())
    if entry is None:
        raise ValidationError(f"Unknown payment gateway '{gateway_name}'")
    table, key = entry
    if raw_status is None:
        return P.PROCESSING
    status = table.get(key(str(raw_status)))
    if status is None:
        logger.warning(
            "Unrecognized gateway status",
            extra={"gateway": gateway_name, "raw_status": str(raw_status)},
        )
        return P.PROCESSING
    return status


# Allowed forward moves. Everything else is a regression or a no-op.
_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    P.PENDING: frozenset({P.PROCESSING, P.APPROVED, P.REJECTED}),
    P.PROCESSING: frozenset({P.APPROVED, P.REJECTED}),
    P.APPROVED: frozenset({P.REFUNDED}),
    P.REJECTED: frozenset(),
    P.REFUNDED: frozenset(),
}


def can_transition(current: str | PaymentStatus, new: str | PaymentStatus) -> bool:
    return PaymentStatus(new) in _TRANSITIONS[PaymentStatus(current)]
