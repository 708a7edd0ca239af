"""
Tests for the command line interface.
"""

import json

import pytest

from onboarder import __version__
from onboarder.app import main
from onboarder.database import Organization, get_session, init_database
from onboarder.logger import get_logger


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Isolated working directory and fast worker settings."""
    monkeypatch.chdir(tmp_path)
    db_path = tmp_path / "data" / "onboarding.db"
    monkeypatch.setenv("ONBOARDER_DB", str(db_path))
    monkeypatch.setenv("ONBOARDER_PROCESSING_DELAY", "0")
    monkeypatch.setenv("ONBOARDER_BACKOFF", "0")
    monkeypatch.setenv("ONBOARDER_TRIES", "2")
    monkeypatch.setenv("ONBOARDER_WORKERS", "2")
    monkeypatch.setenv("ONBOARDER_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("ONBOARDER_LOG_DIR", raising=False)
    yield db_path
    # main() bound a console handler to the captured stdout
    get_logger().configure(enable_file=False, enable_console=False)


def _write_payload(tmp_path, organizations):
    path = tmp_path / "payload.json"
    path.write_text(json.dumps({"organizations": organizations}))
    return path


class TestCLI:

    def test_version(self, cli_env, capsys):
        main(["--version"])
        assert capsys.readouterr().out.strip() == __version__

    def test_init_db(self, cli_env, capsys):
        main(["init-db"])

        assert cli_env.exists()
        assert "Database ready" in capsys.readouterr().out

    def test_onboard_runs_batch_to_completion(self, cli_env, tmp_path, capsys):
        payload = _write_payload(tmp_path, [
            {"name": "Organization 1", "domain": "organization1.com", "contact_email": "contact1@organization1.com"},
            {"name": "Organization 2", "domain": "organization2.com"},
            {"name": "Organization 3", "domain": "organization3.com", "contact_email": "broken"},
        ])

        main(["onboard", "--input", str(payload)])

        out = capsys.readouterr().out
        assert "completed=2" in out
        assert "failed=1" in out
        with get_session(cli_env) as session:
            failed = session.query(Organization).filter_by(status="failed").one()
        assert failed.domain == "organization3.com"
        assert failed.failed_reason == "Invalid email format"

    def test_onboard_no_work_leaves_pending(self, cli_env, tmp_path, capsys):
        payload = _write_payload(tmp_path, [{"name": "A", "domain": "a.com"}])

        main(["onboard", "--input", str(payload), "--no-work"])

        body = json.loads(capsys.readouterr().out)
        assert body["organizations_count"] == 1
        with get_session(cli_env) as session:
            assert session.query(Organization).one().status == "pending"

    def test_onboard_invalid_payload_exits(self, cli_env, tmp_path, capsys):
        payload = _write_payload(tmp_path, [{"name": "No Domain"}])

        with pytest.raises(SystemExit) as exc_info:
            main(["onboard", "--input", str(payload)])

        assert exc_info.value.code == 2
        assert "organizations.0.domain" in capsys.readouterr().out

    def test_onboard_missing_input(self, cli_env, tmp_path):
        with pytest.raises(SystemExit):
            main(["onboard", "--input", str(tmp_path / "nope.json")])

    def test_status_lists_batch(self, cli_env, tmp_path, capsys):
        payload = _write_payload(tmp_path, [{"name": "A", "domain": "a.com"}])
        main(["onboard", "--input", str(payload), "--no-work"])
        batch_id = json.loads(capsys.readouterr().out)["batch_id"]

        main(["status", "--batch", batch_id])

        out = capsys.readouterr().out
        assert "Domain: a.com" in out
        assert "pending=1" in out

    def test_redispatch_processes_pending(self, cli_env, capsys):
        init_database(cli_env)
        with get_session(cli_env) as session:
            session.add(Organization(name="Stuck", domain="stuck.com", batch_id="old-batch"))
            session.commit()

        main(["redispatch", "--batch", "old-batch"])

        assert "Re-dispatched 1 pending organizations." in capsys.readouterr().out
        with get_session(cli_env) as session:
            assert session.query(Organization).one().status == "completed"
