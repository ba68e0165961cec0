"""Tests for payment reconciliation — status tables, transition graph, callbacks."""

import hashlib
import hmac
import json

import pytest

from idcard_engine.common.exceptions import ValidationError
from idcard_engine.payments.adapter import can_transition, normalize
from idcard_engine.payments.callbacks import (
    PARSERS,
    parse_efi_notification,
    parse_pagbank_order,
    parse_pagseguro_transaction,
    verify_hmac_signature,
    verify_pagbank_signature,
)
from idcard_engine.students.enums import PaymentStatus as P


class TestNormalize:
    @pytest.mark.parametrize("raw,expected", [
        ("new", P.PENDING),
        ("waiting", P.PROCESSING),
        ("paid", P.APPROVED),
        ("settled", P.APPROVED),
        ("unpaid", P.REJECTED),
        ("canceled", P.REJECTED),
        ("refunded", P.REFUNDED),
    ])
    def test_efi(self, raw, expected):
        assert normalize("efi", raw) is expected

    @pytest.mark.parametrize("raw,expected", [
        ("WAITING", P.PENDING),
        ("IN_ANALYSIS", P.PROCESSING),
        ("AUTHORIZED", P.PROCESSING),
        ("PAID", P.APPROVED),
        ("DECLINED", P.REJECTED),
        ("CANCELED", P.REJECTED),
    ])
    def test_pagbank(self, raw, expected):
        assert normalize("pagbank", raw) is expected

    def test_pagbank_is_case_insensitive(self):
        assert normalize("pagbank", "paid") is P.APPROVED
        assert normalize("PagBank", " Paid ") is P.APPROVED

    @pytest.mark.parametrize("raw,expected", [
        ("1", P.PENDING), (3, P.APPROVED), ("4", P.APPROVED),
        ("6", P.REFUNDED), ("7", P.REJECTED),
    ])
    def test_pagseguro_numeric_codes(self, raw, expected):
        assert normalize("pagseguro", raw) is expected

    @pytest.mark.parametrize("gateway,raw", [
        ("efi", "approved"),
        ("efi", "PAID_OUT"),
        ("pagbank", "SUCCESS"),
        ("pagseguro", "99"),
        ("efi", ""),
        ("pagbank", None),
    ])
    def test_unknown_code_never_approves(self, gateway, raw):
        assert normalize(gateway, raw) is P.PROCESSING

    def test_unknown_gateway(self):
        with pytest.raises(ValidationError):
            normalize("paypal", "paid")


class TestTransitionGraph:
    def test_forward_moves(self):
        assert can_transition("pending", "processing")
        assert can_transition("pending", "approved")
        assert can_transition("processing", "approved")
        assert can_transition("processing", "rejected")
        assert can_transition("approved", "refunded")

    def test_regressions_and_duplicates_refused(self):
        assert not can_transition("approved", "approved")
        assert not can_transition("approved", "processing")
        assert not can_transition("processing", "pending")
        assert not can_transition("rejected", "approved")
        assert not can_transition("refunded", "approved")
        assert not can_transition("pending", "refunded")


class TestCallbackParsing:
    def test_efi_takes_last_charge_entry(self):
        cb = parse_efi_notification({"data": [
            {"type": "charge", "identifiers": {"charge_id": 42}, "status": {"current": "waiting"}},
            {"type": "charge", "identifiers": {"charge_id": 42}, "status": {"current": "paid"}},
        ]})
        assert cb.gateway == "efi"
        assert cb.charge_id == "42"
        assert cb.raw_status == "paid"

    def test_efi_ignores_non_charge_entries(self):
        assert parse_efi_notification({"data": [{"type": "subscription"}]}) is None

    def test_efi_missing_status(self):
        assert parse_efi_notification({"data": [{"identifiers": {"charge_id": 1}}]}) is None

    def test_pagbank_order(self):
        cb = parse_pagbank_order({"id": "ORDE_1", "charges": [{"status": "PAID"}]})
        assert (cb.gateway, cb.charge_id, cb.raw_status) == ("pagbank", "ORDE_1", "PAID")

    def test_pagbank_missing_status(self):
        assert parse_pagbank_order({"id": "ORDE_1", "charges": []}) is None

    def test_pagseguro_transaction(self):
        cb = parse_pagseguro_transaction({"code": "ABC", "status": 3})
        assert cb.raw_status == "3"

    def test_pagseguro_missing_code(self):
        assert parse_pagseguro_transaction({"status": 3}) is None

    def test_parsers_cover_supported_gateways(self):
        assert set(PARSERS) == {"efi", "pagbank", "pagseguro"}


class TestSignatures:
    def test_hmac_signature_valid(self):
        body = json.dumps({"a": 1}).encode()
        sig = hmac.new(b"secret", body, hashlib.sha256).hexdigest()
        assert verify_hmac_signature(body, sig, "secret")

    def test_hmac_signature_tampered_body(self):
        body = b'{"a": 1}'
        sig = hmac.new(b"secret", body, hashlib.sha256).hexdigest()
        assert not verify_hmac_signature(b'{"a": 2}', sig, "secret")

    def test_hmac_signature_missing(self):
        assert not verify_hmac_signature(b"{}", "", "secret")
        assert not verify_hmac_signature(b"{}", "abc", "")

    def test_pagbank_authenticity_token(self):
        body = b'{"id": "ORDE_1"}'
        sig = hashlib.sha256(b"token-" + body).hexdigest()
        assert verify_pagbank_signature(body, sig, "token")
        assert not verify_pagbank_signature(body, sig, "other")
