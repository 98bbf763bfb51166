"""CLI tests."""

import json
import logging

import pytest

from facetcut.cli import CLIError, FacetCutCLI, OutputFormat, format_output
from facetcut.ledger import DeploymentLedger, DeploymentRecord, FacetEntry, LedgerContext

from conftest import addr


@pytest.fixture
def cli(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    yield FacetCutCLI()
    root = logging.getLogger("facetcut")
    for h in list(root.handlers):
        root.removeHandler(h)


def _run(cli, capsys, *argv):
    code = cli.run(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


class TestFormatOutput:

    def test_table(self):
        rows = [{"signature": "owner()", "selector": "0x8da5cb5b"}]
        lines = format_output(rows, OutputFormat.TABLE).splitlines()
        assert lines[0].split(" | ") == ["signature", "selector  "]
        assert "owner()" in lines[2]

    def test_yaml(self):
        assert format_output({"a": 1}, OutputFormat.YAML).strip() == "a: 1"


class TestSelectorCommands:

    def test_selector(self, cli, capsys):
        code, out, _ = _run(cli, capsys, "selector", "function transfer(address to, uint amount)")
        assert code == 0
        assert json.loads(out) == {"signature": "transfer(address,uint256)", "selector": "0xa9059cbb"}

    def test_selectors_from_artifact(self, cli, capsys, tmp_path):
        artifact = tmp_path / "Ownership.json"
        artifact.write_text(json.dumps({"abi": [
            {"type": "function", "name": "init", "inputs": [{"type": "bytes"}]},
            {"type": "function", "name": "owner", "inputs": []},
            {"type": "function", "name": "transferOwnership", "inputs": [{"type": "address"}]},
        ]}))
        code, out, _ = _run(cli, capsys, "selectors", str(artifact), "-x", "transferOwnership(address)")
        assert code == 0
        assert json.loads(out) == [{"signature": "owner()", "selector": "0x8da5cb5b"}]

    def test_bad_signature(self, cli, capsys):
        code, _, err = _run(cli, capsys, "selector", "nonsense")
        assert code == 1
        assert "Error:" in err

    def test_version(self, cli, capsys, tmp_path):
        src = tmp_path / "Token.sol"
        src.write_text("/// @custom:version 2.0.1\n")
        code, out, _ = _run(cli, capsys, "version", str(src))
        assert code == 0
        assert json.loads(out)["version"] == "2.0.1"

    def test_version_missing(self, cli, capsys, tmp_path):
        src = tmp_path / "Token.sol"
        src.write_text("contract Token {}\n")
        code, _, err = _run(cli, capsys, "-q", "version", str(src))
        assert code == 1
        assert err == ""


class TestLedgerCommands:

    @pytest.fixture
    def populated(self, tmp_path):
        ledger = DeploymentLedger(tmp_path)
        ctx = LedgerContext("sepolia")
        ledger.record_address(ctx, "TokenFacet", addr(1))
        ledger.record_deployment(ctx, "TokenFacet", "1.0.0", DeploymentRecord(addr(1), timestamp="2024-01-01 00:00:00"))
        ledger.record_facets(ctx, {"TokenFacet": FacetEntry(addr(1), "1.0.0")})
        return tmp_path

    def test_addresses(self, cli, capsys, populated):
        code, out, _ = _run(cli, capsys, "ledger", "addresses", "-n", "sepolia", "-d", str(populated))
        assert code == 0
        assert json.loads(out) == [{"module": "TokenFacet", "address": addr(1)}]

    def test_history(self, cli, capsys, populated):
        code, out, _ = _run(cli, capsys, "ledger", "history", "TokenFacet", "-n", "sepolia", "-d", str(populated))
        assert code == 0
        (row,) = json.loads(out)
        assert row["version"] == "1.0.0"
        assert row["ADDRESS"] == addr(1)

    def test_production_is_separate(self, cli, capsys, populated):
        code, out, _ = _run(
            cli, capsys, "ledger", "modules", "-n", "sepolia", "--production", "-d", str(populated),
        )
        assert code == 0
        assert json.loads(out) == {"network": "sepolia", "environment": "production", "modules": []}

    def test_diamond(self, cli, capsys, populated):
        code, out, _ = _run(cli, capsys, "ledger", "diamond", "-n", "sepolia", "-d", str(populated))
        assert code == 0
        assert json.loads(out)["Diamond"]["Facets"]["TokenFacet"]["Version"] == "1.0.0"

    def test_corrupt_history(self, cli, capsys, tmp_path):
        (tmp_path / "staging_deployment_details.json").write_text("{")
        code, _, err = _run(cli, capsys, "ledger", "history", "TokenFacet", "-d", str(tmp_path))
        assert code == 1
        assert "unreadable" in err


class TestConfigCommands:

    def test_show_redacts(self, cli, capsys, monkeypatch):
        monkeypatch.setenv("ETHERSCAN_API_KEY", "sekret")
        code, out, _ = _run(cli, capsys, "config", "show")
        assert code == 0
        assert json.loads(out)["verification"]["api_key"] == "***"

    def test_config_file(self, cli, capsys, tmp_path):
        path = tmp_path / "facetcut.yaml"
        path.write_text("network:\n  name: holesky\n")
        code, out, _ = _run(cli, capsys, "-c", str(path), "config", "get", "network.name")
        assert code == 0
        assert json.loads(out)["value"] == "holesky"

    def test_project_file_loaded_from_working_directory(self, cli, capsys, tmp_path):
        (tmp_path / "facetcut.yaml").write_text("network:\n  name: holesky\n")
        code, out, _ = _run(cli, capsys, "config", "get", "network.name")
        assert code == 0
        assert json.loads(out)["value"] == "holesky"

    def test_explicit_config_overrides_project_file(self, cli, capsys, tmp_path):
        (tmp_path / "facetcut.yaml").write_text("network:\n  name: holesky\n")
        explicit = tmp_path / "other.yaml"
        explicit.write_text("network:\n  name: sepolia\n")
        code, out, _ = _run(cli, capsys, "-c", str(explicit), "config", "get", "network.name")
        assert code == 0
        assert json.loads(out)["value"] == "sepolia"

    def test_validate_failure(self, cli, capsys, monkeypatch):
        monkeypatch.setenv("FACETCUT_LOG_FORMAT", "xml")
        code, _, err = _run(cli, capsys, "config", "validate")
        assert code == 1
        assert "observability.log_format" in err

    def test_missing_subcommand(self, cli, capsys):
        code, _, _ = _run(cli, capsys, "config")
        assert code == 2


def test_cli_error_exit_code():
    assert CLIError("x", exit_code=3).exit_code == 3
