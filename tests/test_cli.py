"""
Tests for the CLI interface.
"""
import os
import shutil
import tempfile
from datetime import date
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from gateway_costs.billing.demo import HAIKU_ID
from gateway_costs.cli.main import app, EXIT_CODE_OK, EXIT_CODE_FAIL
from gateway_costs.storage.cache import CostCacheStore
from gateway_costs.storage.models import QueryKind

runner = CliRunner()


@pytest.fixture
def config_path():
    """Write a config pointing both caches into a temporary directory."""
    temp_dir = tempfile.mkdtemp()
    path = os.path.join(temp_dir, "config.yaml")
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump({
            "cache": {
                "path": os.path.join(temp_dir, "cache.db"),
                "demo_path": os.path.join(temp_dir, "demo.db"),
            }
        }, f)
    yield path
    shutil.rmtree(temp_dir, ignore_errors=True)


def _invoke(args, config_path):
    return runner.invoke(app, args + ["--demo", "--config", config_path])


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])

        assert result.exit_code == EXIT_CODE_OK
        assert "Use --help" in result.output

    def test_init_creates_cache(self, config_path):
        """Test init creates the configured cache database."""
        result = runner.invoke(app, ["init", "--config", config_path])

        assert result.exit_code == EXIT_CODE_OK
        assert "Cost cache initialized successfully" in result.output
        assert os.path.exists(os.path.join(os.path.dirname(config_path), "cache.db"))

    def test_init_with_missing_config(self):
        result = runner.invoke(app, ["init", "--config", "nonexistent.yaml"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error initializing cost cache" in result.output

    def test_daily_default_period(self, config_path):
        """Test daily report over the default rolling period."""
        result = _invoke(["daily"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "Daily Cost" in result.output
        assert "Total" in result.output

    def test_daily_explicit_range_fills_cache(self, config_path):
        """Test that a past range is summed and written to the demo cache."""
        result = _invoke(["daily", "--start", "2024-01-01", "--end", "2024-01-08"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "Daily Cost 2024-01-01 to 2024-01-08" in result.output
        assert "344.30" in result.output

        store = CostCacheStore(os.path.join(os.path.dirname(config_path), "demo.db"))
        assert len(store.get(QueryKind.DAILY, "", "2024-01-01", "2024-01-08")) == 7

    def test_monthly_for_user_email(self, config_path):
        """Test that a user may be given by email."""
        result = _invoke(
            ["monthly", "--user", "alice@example.com", "--start", "2024-01-01", "--end", "2024-03-01"],
            config_path,
        )

        assert result.exit_code == EXIT_CODE_OK
        assert "Monthly Cost 2024-01-01 to 2024-03-01" in result.output

    def test_user_and_model_rejected(self, config_path):
        result = _invoke(["daily", "--user", "u1", "--model", "m1"], config_path)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "cannot be combined" in result.output

    def test_unknown_period(self, config_path):
        result = _invoke(["daily", "--period", "fortnight"], config_path)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown period" in result.output

    def test_start_without_end(self, config_path):
        result = _invoke(["daily", "--start", "2024-01-01"], config_path)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "must be given together" in result.output

    def test_users_breakdown(self, config_path):
        """Test per-user totals are labelled with emails."""
        result = _invoke(["users", "--start", "2024-01-01", "--end", "2024-02-01"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "Cost by User" in result.output
        assert "alice@example.com" in result.output
        assert "120.50" in result.output

    def test_models_for_user(self, config_path):
        result = _invoke(
            ["models", "--user", "bob@example.com", "--start", "2024-01-01", "--end", "2024-02-01"],
            config_path,
        )

        assert result.exit_code == EXIT_CODE_OK
        assert "claude-3-opus" in result.output
        assert "32.50" in result.output

    def test_empty_breakdown(self, config_path):
        result = _invoke(["users", "--model", "unknown-model"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "No user spend found" in result.output

    def test_service_error_exits_with_failure(self, config_path):
        """Test that setup errors are reported, not raised."""
        with patch('gateway_costs.cli.main._build_service', side_effect=RuntimeError("no credentials")):
            result = _invoke(["models"], config_path)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "no credentials" in result.output


class TestMonthOption:
    """Test selecting a single calendar month."""

    def test_users_for_month(self, config_path):
        result = _invoke(["users", "--month", "2024-01"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "Cost by User 2024-01-01" in result.output
        assert "2024-02-01" in result.output
        assert "120.50" in result.output

    def test_daily_for_leap_february(self, config_path):
        result = _invoke(["daily", "--month", "2024-02"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "Daily Cost 2024-02-01" in result.output
        assert "2024-03-01" in result.output

    def test_invalid_month(self, config_path):
        result = _invoke(["models", "--month", "2024-13"], config_path)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid month" in result.output

    def test_month_with_start_rejected(self, config_path):
        result = _invoke(["users", "--month", "2024-01", "--start", "2024-01-05"], config_path)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "cannot be combined" in result.output

    def test_monthly_rolling_period_starts_on_first(self, config_path):
        """Rolling monthly periods cover whole months."""
        with patch('gateway_costs.cli.main._utc_today', return_value=date(2024, 3, 15)):
            result = _invoke(["monthly", "--period", "3m"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "Monthly Cost 2023-12-01" in result.output
        assert "2024-03-16" in result.output


class TestDirectoryCommands:
    """Test directory listing and detail commands."""

    def test_directory_lists_users_and_models(self, config_path):
        result = _invoke(["directory"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "alice@example.com" in result.output
        assert "charlie@example.com" in result.output
        assert "claude-3-haiku" in result.output

    def test_empty_directory(self, config_path):
        with patch('gateway_costs.storage.identity.StaticDirectory.list_models', return_value=[]):
            result = _invoke(["directory"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "No models in the directory" in result.output

    def test_user_detail_by_email(self, config_path):
        """Test a user's entry is shown with their spend per model."""
        result = _invoke(["user", "alice@example.com", "--month", "2024-01"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "User alice@example.com" in result.output
        assert "0 active of 0" in result.output
        assert "claude-3-opus" in result.output
        assert "48.30" in result.output

    def test_unknown_user_detail(self, config_path):
        result = _invoke(["user", "nobody@example.com", "--month", "2024-01"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "User unknown" in result.output
        assert "No model spend found" in result.output

    def test_model_detail(self, config_path):
        result = _invoke(["model", HAIKU_ID, "--month", "2024-01"], config_path)

        assert result.exit_code == EXIT_CODE_OK
        assert "Model claude-3-haiku" in result.output
        assert "enabled" in result.output
        assert "alice@example.com" in result.output
        assert "22.00" in result.output
