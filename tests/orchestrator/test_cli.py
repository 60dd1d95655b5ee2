"""
Orchestrator CLI and bootstrap tests.
"""

import json
import logging

import pytest

from core.exceptions import ConfigurationError
from credential_vault import MASTER_KEY_ENV
from execution_engine.config import ExecutionEngineConfig
from orchestrator.bootstrap import build_core
from orchestrator.cli import create_parser, main, setup_logging
from risk_management import RiskEngineConfig
from storage import DatabaseConfig


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv(MASTER_KEY_ENV, "cli-master-key")
    monkeypatch.setenv("TRADING_MODE", "paper")
    return tmp_path


# ============================================================
# PARSER
# ============================================================

class TestParser:
    """Tests for create_parser."""

    def test_sync_options(self):
        args = create_parser().parse_args(["sync", "--account", "acc-1", "--force"])

        assert args.command == "sync"
        assert args.account_id == "acc-1"
        assert args.force is True
        assert args.loop is False

    def test_liquidate_requires_reason(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["liquidate", "acc-1"])

    def test_clear_stop(self):
        args = create_parser().parse_args(["--log-format", "json", "clear-stop", "acc-1", "--by", "ops"])

        assert args.log_format == "json"
        assert args.cleared_by == "ops"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])


# ============================================================
# LOGGING
# ============================================================

class TestLogging:
    """Tests for setup_logging."""

    def test_json_lines(self, capsys, restore_logging):
        logger = setup_logging("INFO", "json")

        logger.info("core started")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["level"] == "INFO"
        assert record["logger"] == "orchestrator"
        assert record["message"] == "core started"

    def test_level_applied(self, restore_logging):
        setup_logging("WARNING")

        assert logging.getLogger().level == logging.WARNING


# ============================================================
# BOOTSTRAP
# ============================================================

class TestBuildCore:
    """Tests for build_core."""

    @pytest.mark.asyncio
    async def test_wires_components(self, tmp_path, vault, clock):
        core = build_core(
            engine_config=ExecutionEngineConfig.for_testing(),
            risk_config=RiskEngineConfig.for_testing(),
            database_config=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'core.db'}"),
            vault=vault,
            clock=clock,
        )
        try:
            await core.database.create_all()
            await core.repository.create_account(user_id="user-1", account_id="acc-1")

            result = await core.reconciler.run()
            report = await core.risk_engine.emergency_liquidate("acc-1", "wiring check")

            assert result.success
            assert report.emergency_stop_set is True
            assert core.risk_engine.circuit_breaker is core.circuit_breaker
        finally:
            await core.close()

    def test_missing_master_key(self, monkeypatch, tmp_path):
        monkeypatch.delenv(MASTER_KEY_ENV, raising=False)
        monkeypatch.chdir(tmp_path)

        with pytest.raises(ConfigurationError):
            build_core(
                engine_config=ExecutionEngineConfig.for_testing(),
                risk_config=RiskEngineConfig.for_testing(),
                database_config=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'core.db'}"),
            )


# ============================================================
# MAIN
# ============================================================

class TestMain:
    """End-to-end runs of the CLI entry point."""

    def test_init_db_then_clear_stop(self, cli_env, capsys, restore_logging):
        assert main(["init-db"]) == 0
        assert main(["clear-stop", "acc-404", "--by", "ops"]) == 0

        assert "Emergency stop was not set for acc-404" in capsys.readouterr().out

    def test_sync_with_no_connections(self, cli_env, capsys, restore_logging):
        main(["init-db"])

        assert main(["sync", "--force"]) == 0
        assert "0 synced, 0 skipped, 0 failed" in capsys.readouterr().out

    def test_missing_master_key_exit_code(self, cli_env, monkeypatch, restore_logging):
        monkeypatch.delenv(MASTER_KEY_ENV)
        monkeypatch.chdir(cli_env)

        assert main(["monitor", "--once"]) == 2
