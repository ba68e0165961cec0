"""Tests for the idcard command line."""

import pytest
from typer.testing import CliRunner

from idcard_engine.cli import app
from idcard_engine.common.config import get_settings
from idcard_engine.deps import reset_singletons
from idcard_engine.students.card_codes import qr_payload

runner = CliRunner()
CLI_KEY = "cli-hmac-key"


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("IDCARD_DB_URL", f"sqlite+aiosqlite:///{tmp_path}/cli.db")
    monkeypatch.setenv("IDCARD_HMAC_KEY", CLI_KEY)
    get_settings.cache_clear()
    reset_singletons()
    yield
    get_settings.cache_clear()
    reset_singletons()


def test_seed_gateways():
    result = runner.invoke(app, ["seed-gateways", "--name", "efi", "--name", "pagbank", "--active", "pagbank"])
    assert result.exit_code == 0, result.output
    assert "efi" in result.output and "pagbank" in result.output

    again = runner.invoke(app, ["seed-gateways", "--name", "pagseguro", "--active", "pagseguro"])
    assert again.exit_code == 0
    assert "pagseguro" in again.output


def test_seed_unknown_gateway():
    result = runner.invoke(app, ["seed-gateways", "--name", "paypal"])
    assert result.exit_code == 1
    assert "VALIDATION" in result.output


def test_seed_plans():
    result = runner.invoke(app, ["seed-plans"])
    assert result.exit_code == 0, result.output
    for code in ("geral_digital", "direito_digital", "geral_fisica", "direito_fisica"):
        assert code in result.output
    assert "29.90" in result.output

    again = runner.invoke(app, ["seed-plans"])
    assert again.exit_code == 0
    assert again.output.count("geral_digital") == 1


def test_create_super_admin():
    result = runner.invoke(app, ["create-super-admin", "auth-root", "Root@Example.com"])
    assert result.exit_code == 0, result.output
    assert "root@example.com" in result.output

    again = runner.invoke(app, ["create-super-admin", "auth-root", "root@example.com"])
    assert again.exit_code != 0


def test_resolve_unknown_user():
    result = runner.invoke(app, ["resolve", "nobody"])
    assert result.exit_code == 0, result.output
    assert "complete_profile" in result.output
    assert "0% complete" in result.output


def test_verify_empty_audit_chain():
    result = runner.invoke(app, ["verify-audit"])
    assert result.exit_code == 0
    assert "VALID" in result.output


def test_purge_nothing():
    result = runner.invoke(app, ["purge-rejected-documents"])
    assert result.exit_code == 0
    assert "Deleted 0 records" in result.output


def test_add_rejection_reason():
    result = runner.invoke(app, ["add-rejection-reason", "rg", "Documento vencido"])
    assert result.exit_code == 0, result.output
    assert "rg: Documento vencido" in result.output

    bad = runner.invoke(app, ["add-rejection-reason", "passport", "Nope"])
    assert bad.exit_code == 1


def test_verify_qr():
    payload = qr_payload("CIE-2026-AAAAA-BBBBB", CLI_KEY)
    assert runner.invoke(app, ["verify-qr", payload]).exit_code == 0
    forged = payload[:-1] + ("0" if payload[-1] != "0" else "1")
    assert runner.invoke(app, ["verify-qr", forged]).exit_code == 1
