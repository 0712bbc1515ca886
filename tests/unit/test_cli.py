import json
from urllib.parse import parse_qs, urlparse

import pytest
from click.testing import CliRunner

from reporting_api import cli as cli_module
from reporting_api import dependencies
from reporting_api.cli import cli

FILENAME = "2025-12-19T00-00-00-000Z.pdf"


@pytest.fixture
def runner(monkeypatch, test_settings):
    monkeypatch.setattr(cli_module, "get_settings", lambda: test_settings)
    monkeypatch.setattr(dependencies, "get_settings", lambda: test_settings)
    return CliRunner()


def _json_tail(output: str) -> dict:
    return json.loads(output[output.index("{"):])


def _mint(runner, *extra):
    args = ["signed-url", "mint", "--agency-id", "agency-1", "--client-id", "client-1", "--filename", FILENAME]
    return runner.invoke(cli, args + list(extra))


def test_mint_prints_url(runner):
    result = _mint(runner, "--ttl", "120")

    assert result.exit_code == 0, result.output
    data = _json_tail(result.output)
    assert data["ttl"] == 120
    assert data["expiresAt"].endswith("Z")
    assert data["url"].startswith(f"http://testserver/reports/agency-1/client-1/{FILENAME}?token=")


def test_mint_rejects_bad_filename(runner):
    result = runner.invoke(cli, [
        "signed-url", "mint", "--agency-id", "agency-1", "--client-id", "client-1", "--filename", "report.txt",
    ])
    assert result.exit_code != 0
    assert "INVALID_FILE_TYPE" in result.output


def test_verify_round_trip(runner):
    url = _json_tail(_mint(runner).output)["url"]
    token = parse_qs(urlparse(url).query)["token"][0]

    ok = runner.invoke(cli, [
        "signed-url", "verify", "--agency-id", "agency-1", "--client-id", "client-1",
        "--filename", FILENAME, "--token", token,
    ])
    assert ok.exit_code == 0
    assert "Token valid" in ok.output

    mismatch = runner.invoke(cli, [
        "signed-url", "verify", "--agency-id", "agency-2", "--client-id", "client-1",
        "--filename", FILENAME, "--token", token,
    ])
    assert mismatch.exit_code == 1
    assert "PDF_TOKEN_MISMATCH" in mismatch.output


def test_mint_without_signing_secret(monkeypatch, test_settings):
    unsigned = test_settings.model_copy(update={"pdf_signing_secret": None})
    monkeypatch.setattr(cli_module, "get_settings", lambda: unsigned)

    result = _mint(CliRunner())
    assert result.exit_code != 0
    assert "PDF signing not configured" in result.output


def test_agency_create_and_rotate(runner):
    created = runner.invoke(cli, ["agency", "create", "--name", "Acme", "--billing-email", "billing@acme.test"])
    assert created.exit_code == 0, created.output
    data = _json_tail(created.output)
    assert data["apiKey"].startswith("rk_")

    # Memory backend is a process-wide singleton, so the agency is still there
    rotated = runner.invoke(cli, ["agency", "rotate-key", data["agencyId"]])
    assert rotated.exit_code == 0, rotated.output
    assert _json_tail(rotated.output)["newApiKey"] != data["apiKey"]


def test_rotate_unknown_agency(runner):
    result = runner.invoke(cli, ["agency", "rotate-key", "missing"])
    assert result.exit_code != 0
    assert "AGENCY_NOT_FOUND" in result.output
