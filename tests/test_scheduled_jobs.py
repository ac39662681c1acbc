"""
Tests for the scheduled jobs entrypoint (scripts/run_scheduled_jobs.py).

Validates:
- The policy checksum record is emitted through the configured JSON handler
- A broken policy file is reported without touching the database
"""

import importlib.util
import json
import logging
from pathlib import Path

import pytest

from supply_config import DEFAULT_POLICY_PATH, clear_policy_cache
from supply_kernel.logging_config import configure_logging, reset_logging

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "run_scheduled_jobs.py"


@pytest.fixture
def jobs():
    spec = importlib.util.spec_from_file_location("run_scheduled_jobs", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def unconfigured_logging():
    reset_logging()
    clear_policy_cache()
    yield
    clear_policy_cache()
    reset_logging()
    configure_logging(level=logging.DEBUG)


class TestPolicyBootstrap:
    def test_checksum_record_is_logged(self, jobs, unconfigured_logging, capsys):
        args = jobs._parse_args(["--policy", str(DEFAULT_POLICY_PATH), "--log-level", "info"])

        policy = jobs._load_policy(args)

        records = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line]
        (loaded,) = [r for r in records if r["message"] == "supply_policy_loaded"]
        assert loaded["checksum"] == policy.checksum
        assert loaded["policy_version"] == policy.version

    def test_invalid_policy_exits_before_database(self, jobs, unconfigured_logging, tmp_path, capsys):
        broken = tmp_path / "policy.yaml"
        broken.write_text("risk:\n  weight_unknown: 3\n")

        exit_code = jobs.main(["--policy", str(broken), "--db-url", "sqlite:///:memory:"])

        assert exit_code == 1
        assert "Failed to load policy" in capsys.readouterr().err
