"""HTTP client for creating charges on the active payment gateway."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx

from idcard_engine.common.exceptions import ExternalDependencyError
from idcard_engine.payments.callbacks import parse_pagbank_order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChargeResponse:
    charge_id: str
    raw_status: str


def _extract_efi(body: dict[str, Any]) -> tuple[Any, Any]:
    data = body.get("data") or {}
    return data.get("charge_id"), data.get("status")


def _extract_pagbank(body: dict[str, Any]) -> tuple[Any, Any]:
    parsed = parse_pagbank_order(body)
    if parsed is None:
        return None, None
    return parsed.charge_id, parsed.raw_status


def _extract_pagseguro(body: dict[str, Any]) -> tuple[Any, Any]:
    return body.get("code"), body.get("status")


_EXTRACTORS = {
    "efi": _extract_efi,
    "pagbank": _extract_pagbank,
    "pagseguro": _extract_pagseguro,
}


class GatewayClient:
    """Creates a charge and returns the gateway's id and raw status.

    Only the shape of the answer matters here; what the raw status means is
    decided by the reconciliation adapter.
    """

    def __init__(
        self,
        gateway_name: str,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if gateway_name not in _EXTRACTORS:
            raise ValueError(f"Unsupported gateway '{gateway_name}'")
        self.gateway_name = gateway_name
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def create_charge(
        self, amount: Decimal, method: str, customer: dict[str, Any]
    ) -> ChargeResponse:
        payload = {
            "amount_cents": int((Decimal(amount) * 100).to_integral_value()),
            "method": method,
            "customer": customer,
        }
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            ) as client:
                resp = await client.post(
                    f"{self.base_url}/charges", json=payload, headers=headers,
                )
                resp.raise_for_status()
                body = resp.json()
        except httpx.TimeoutException as exc:
            raise ExternalDependencyError(f"{self.gateway_name} charge timed out") from exc
        except httpx.HTTPError as exc:
            raise ExternalDependencyError(f"{self.gateway_name} charge failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalDependencyError(f"{self.gateway_name} returned invalid JSON") from exc

        charge_id, raw_status = _EXTRACTORS[self.gateway_name](body)
        if charge_id is None:
            raise ExternalDependencyError(f"{self.gateway_name} response without charge id")
        logger.info(
            "Charge created",
            extra={"gateway": self.gateway_name, "charge_id": str(charge_id), "raw_status": str(raw_status)},
        )
        return ChargeResponse(charge_id=str(charge_id), raw_status=str(raw_status or ""))
