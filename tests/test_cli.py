import tempfile
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from outreach_engine.core.cli import cli
from outreach_engine.core.db import init_db, insert_prospect

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def test_cli_status_empty():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        init_db(db_path)

        runner = CliRunner()
        result = runner.invoke(cli, ["status", "--db", str(db_path), "--config", str(CONFIG_DIR)])

        assert result.exit_code == 0
        assert "Pipeline Status" in result.output
        assert "Reply Routing" in result.output
        assert "Daily sends: 0/50" in result.output


def test_cli_status_single_prospect():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        init_db(db_path)
        insert_prospect(db_path, "jane@acme.com", "Jane", "Doe", "Acme", intent_score=70)

        runner = CliRunner()
        result = runner.invoke(cli, ["status", "--db", str(db_path), "--prospect", "jane@acme.com"])
        missing = runner.invoke(cli, ["status", "--db", str(db_path), "--prospect", "nobody@acme.com"])

        assert result.exit_code == 0
        assert "Company: Acme" in result.output
        assert "Status: new" in result.output
        assert "Prospect not found" in missing.output


def test_cli_classify():
    runner = CliRunner()
    result = runner.invoke(cli, ["classify", "Not interested, please remove me", "--config", str(CONFIG_DIR)])

    assert result.exit_code == 0
    assert "Category:   not_interested" in result.output
    assert "remove_from_sequence" in result.output
    assert "Review:     no" in result.output


def test_cli_run_once_no_prospects():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"

        with patch("outreach_engine.core.cli.build_backend", return_value=None):
            runner = CliRunner()
            result = runner.invoke(
                cli, ["run", "--once", "--db", str(db_path), "--config", str(CONFIG_DIR)]
            )

        assert result.exit_code == 0, result.output
        assert "CYCLE SUMMARY" in result.output
        assert "Prospects discovered: 0" in result.output
        assert "Daily total: 0/50" in result.output
