"""Tests for the hourbank CLI."""

from __future__ import annotations

import json
import os
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient
from typer.testing import CliRunner

from hourbank.cli import app
from hourbank.core.api.server import create_app
from hourbank.core.api.settings import load_settings
from hourbank.core.credits.ledger import CreditLedger

runner = CliRunner()


@pytest.fixture
def ledger_file(tmp_path):
    path = str(tmp_path / "hourbank_ledger.jsonl")
    ledger = CreditLedger()
    ledger.configure_persistence(path)
    ledger.create_batch("cust_1", 10, batch_id="bat_old")
    ledger.create_batch("cust_1", 20, batch_id="bat_new")
    return path


def _serve(monkeypatch, tmp_path, **settings):
    """Route the CLI's HTTP calls to an in-process app holding 40h for cust_1."""
    for var in list(os.environ):
        if var.startswith("HOURBANK_"):
            monkeypatch.delenv(var, raising=False)
    server_app = create_app(load_settings(data_dir=str(tmp_path), **settings))
    servers = []

    def client_for(server):
        servers.append(server)
        return TestClient(server_app)

    monkeypatch.setattr("hourbank.cli._api_client", client_for)
    with TestClient(server_app) as client:
        r = client.post(
            "/v1/purchases",
            json={
                "customer_id": "cust_1",
                "hours": 40,
                "payment_method": "card",
                "intent_token": "tok_1",
            },
        )
        assert r.status_code == 200
    return servers


class TestInfoCommands:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "hourbank 1.0.0" in result.output

    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "1.0.0" in result.output


class TestPricingCommands:
    def test_packages_json(self):
        result = runner.invoke(app, ["packages", "--json"])
        assert result.exit_code == 0
        pkgs = json.loads(result.stdout)
        assert len(pkgs) == 20
        assert pkgs[0]["hours"] == "40"
        assert pkgs[0]["total_price"] == "2770.00"

    def test_packages_table(self):
        result = runner.invoke(app, ["packages"])
        assert result.exit_code == 0
        assert "2770.00" in result.output

    def test_quote(self):
        result = runner.invoke(app, ["quote", "40"])
        assert result.exit_code == 0
        assert "2770.00" in result.output

    def test_quote_json_with_characteristics(self):
        result = runner.invoke(app, ["quote", "40", "-c", "high", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["final_price"] == "3586.00"

    def test_quote_out_of_range(self):
        result = runner.invoke(app, ["quote", "1"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_quote_custom_pricing(self, tmp_path):
        path = tmp_path / "pricing.yaml"
        path.write_text("fees:\n  product_fee: '30'\n")
        result = runner.invoke(app, ["quote", "40", "--pricing-config", str(path), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["final_price"] == "2750.00"

    def test_suggest(self):
        result = runner.invoke(app, ["suggest", "75"])
        assert result.exit_code == 0
        assert "Suggested package: 80h" in result.output


class TestLedgerCommands:
    def test_balance(self, ledger_file):
        result = runner.invoke(app, ["balance", "cust_1", "--ledger", ledger_file])
        assert result.exit_code == 0
        assert "30h available" in result.output

    def test_balance_json(self, ledger_file):
        result = runner.invoke(app, ["balance", "cust_1", "--ledger", ledger_file, "--json"])
        data = json.loads(result.stdout)
        assert data["balance"]["available_hours"] == "30"
        assert [b["id"] for b in data["batches"]] == ["bat_old", "bat_new"]

    def test_balance_missing_ledger(self, tmp_path):
        result = runner.invoke(
            app, ["balance", "cust_1", "--ledger", str(tmp_path / "nope.jsonl")]
        )
        assert result.exit_code == 1
        assert "No ledger" in result.output

    def test_balance_does_not_write(self, ledger_file):
        before = Path(ledger_file).read_text()
        runner.invoke(app, ["balance", "cust_1", "--ledger", ledger_file])
        assert Path(ledger_file).read_text() == before


class TestServerCommands:
    def test_redeem_goes_through_server(self, monkeypatch, tmp_path):
        servers = _serve(monkeypatch, tmp_path)
        result = runner.invoke(
            app, ["redeem", "cust_1", "15", "--server", "http://hourbank.test:9000"]
        )
        assert result.exit_code == 0
        assert "Redeemed 15h" in result.output
        assert "25h left" in result.output
        assert servers == ["http://hourbank.test:9000"]

        replayed = CreditLedger()
        replayed.configure_persistence(str(tmp_path / "hourbank_ledger.jsonl"))
        assert str(replayed.get_balance("cust_1").available_hours) == "25"

    def test_redeem_insufficient(self, monkeypatch, tmp_path):
        _serve(monkeypatch, tmp_path)
        result = runner.invoke(app, ["redeem", "cust_1", "41"])
        assert result.exit_code == 1
        assert "INSUFFICIENT_CREDIT" in result.output

    def test_server_url_from_env(self, monkeypatch, tmp_path):
        servers = _serve(monkeypatch, tmp_path)
        result = runner.invoke(
            app, ["redeem", "cust_1", "1"], env={"HOURBANK_SERVER_URL": "http://env.test:1"}
        )
        assert result.exit_code == 0
        assert servers == ["http://env.test:1"]

    def test_sweep(self, monkeypatch, tmp_path):
        _serve(monkeypatch, tmp_path)
        result = runner.invoke(app, ["sweep"])
        assert result.exit_code == 0
        assert "Archived 0 batches" in result.output

    def test_sweep_admin_key(self, monkeypatch, tmp_path):
        _serve(monkeypatch, tmp_path, admin_key="k")
        refused = runner.invoke(app, ["sweep"])
        assert refused.exit_code == 1
        assert "ADMIN_KEY_REQUIRED" in refused.output
        ok = runner.invoke(app, ["sweep", "--admin-key", "k"])
        assert ok.exit_code == 0

    def test_server_unreachable(self, monkeypatch):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        monkeypatch.setattr(
            "hourbank.cli._api_client",
            lambda server: httpx.Client(base_url=server, transport=httpx.MockTransport(refuse)),
        )
        result = runner.invoke(app, ["redeem", "cust_1", "1"])
        assert result.exit_code == 1
        assert "Cannot reach hourbank server" in result.output
