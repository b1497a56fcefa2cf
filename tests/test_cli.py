"""
Tests for the operator CLI.
"""

import json
from datetime import timedelta

import pytest
from click.testing import CliRunner

from docreq.cli import cli
from docreq.config import load_config
from docreq.store.models import UserRole, utcnow
from docreq.tracker import Tracker


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "tracker.json"
    path.write_text(json.dumps({
        "database_url": f"sqlite:///{tmp_path / 'cli.db'}",
        "storage": {"backend": "local", "root": str(tmp_path / "blobs")},
    }))
    return str(path)


@pytest.fixture
def seeded(config_file):
    tracker = Tracker.from_config(load_config(config_file))
    d = tracker.directory
    org = d.create_organization("Ministry of Works")
    d.create_user("U1", user_id="u1")
    d.create_user("U2", user_id="u2")
    d.create_user("Admin", role=UserRole.ADMIN, user_id="admin-1")
    d.add_member(org.id, "u1")
    d.add_member(org.id, "u2")
    first = tracker.engine.create_request(
        {"reference_number": "REF-100", "date_received": "2025-01-15",
         "sender": org.id, "subject": "Land registry extract"},
        "u1",
    )
    second = tracker.engine.create_request(
        {"reference_number": "REF-200", "date_received": "2025-02-01",
         "sender": org.id, "subject": "Survey map", "priority": "high"},
        "u1",
    )
    tracker.engine.add_comment(first.id, "Waiting on archive", "u2", is_internal=True)
    tracker.close()
    return {"first": first.id, "second": second.id}


class TestCli:
    def setup_method(self):
        self.runner = CliRunner()

    def _run(self, config_file, *args):
        return self.runner.invoke(cli, ["--config", config_file, *args])

    def test_version(self):
        result = self.runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "docreq" in result.output

    def test_requests_listing(self, config_file, seeded):
        result = self._run(config_file, "requests")
        assert result.exit_code == 0, result.output
        assert "Tracked requests (2)" in result.output
        assert result.output.index("REF-200") < result.output.index("REF-100")

        result = self._run(config_file, "requests", "--priority", "high")
        assert "REF-200" in result.output
        assert "REF-100" not in result.output

        result = self._run(config_file, "requests", "--search", "land")
        assert "REF-100" in result.output
        assert "REF-200" not in result.output

    def test_empty_listing(self, config_file):
        result = self._run(config_file, "requests")
        assert result.exit_code == 0
        assert "No tracked requests." in result.output

    def test_show(self, config_file, seeded):
        result = self._run(config_file, "show", seeded["first"])
        assert result.exit_code == 0, result.output
        assert "REF-100" in result.output
        assert "Pending" in result.output
        assert "Waiting on archive" in result.output

        result = self._run(config_file, "show", seeded["first"], "--no-internal")
        assert "Waiting on archive" not in result.output

    def test_show_missing(self, config_file, seeded):
        result = self._run(config_file, "show", "missing-id")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_status_then_notifications(self, config_file, seeded):
        result = self._run(config_file, "status", seeded["first"], "completed", "--actor", "admin-1")
        assert result.exit_code == 0, result.output
        assert "Updated request" in result.output
        assert "Scheduled for deletion on" in result.output

        result = self._run(config_file, "notifications", "u2", "--limit", "0")
        assert result.exit_code == 0
        assert "Request Completed" in result.output
        assert "Request Status Updated" in result.output

        result = self._run(config_file, "notifications", "u2", "--mark-all")
        assert "Marked" in result.output
        result = self._run(config_file, "notifications", "u2", "--unread")
        assert "Unread: 0" in result.output

    def test_invalid_status_choice(self, config_file, seeded):
        result = self._run(config_file, "status", seeded["first"], "archived", "--actor", "admin-1")
        assert result.exit_code == 2

    def test_sweep_purges_expired(self, config_file, seeded):
        tracker = Tracker.from_config(load_config(config_file))
        past = utcnow() - timedelta(days=200)
        tracker.engine.clock = lambda: past
        tracker.engine.change_status(seeded["second"], "completed", "admin-1")
        tracker.close()

        result = self._run(config_file, "sweep")
        assert result.exit_code == 0, result.output
        assert "Purged:         1" in result.output

        result = self._run(config_file, "requests")
        assert "REF-200" not in result.output

    def test_stats(self, config_file, seeded):
        result = self._run(config_file, "stats")
        assert result.exit_code == 0
        assert "Total requests: 2" in result.output
        assert "pending" in result.output
        assert "high" in result.output

    def test_db_option_overrides_config(self, config_file, seeded, tmp_path):
        other = f"sqlite:///{tmp_path / 'other.db'}"
        result = self._run(config_file, "--db", other, "stats")
        assert "Total requests: 0" in result.output
