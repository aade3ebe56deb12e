import json
import logging
import os

import pytest

from altwatch import cli
from altwatch.storage import get_current_job, init_db


@pytest.fixture
def run(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "_setup_logging", lambda: logging.getLogger("altwatch.test"))
    corpus = tmp_path / "corpus.json"
    corpus.write_text(
        json.dumps(
            {
                "assets": [
                    {"id": 1, "alt_text": "", "mime_type": "image/png", "filename": "a.png"},
                    {"id": 2, "alt_text": "screenshot", "mime_type": "image/png", "filename": "b.png"},
                    {"id": 3, "alt_text": "Two kayaks on a calm lake", "mime_type": "image/png"},
                ],
                "records": [
                    {
                        "id": 9,
                        "title": "Trip report",
                        "content_type": "post",
                        "fields": [{"name": "body", "kind": "inline_markup", "value": "<img src='/k.png' alt='kayak'>"}],
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    db_path = str(tmp_path / "state.sqlite3")

    def _run(*argv):
        return cli.main(["--db", db_path, "--corpus", str(corpus), *argv])

    _run.db_path = db_path
    return _run


def test_scan_run_media_to_completion(run):
    assert run("scan", "start", "--type", "media") == 0
    assert run("scan", "run") == 0
    job = get_current_job(init_db(run.db_path))
    assert job.status == "completed"
    assert job.progress_total == 3


def test_scan_step_and_cancel(run):
    assert run("scan", "step") == 1
    assert run("scan", "cancel") == 1
    assert run("scan", "run", "--type", "content") == 0
    job = get_current_job(init_db(run.db_path))
    assert job.job_type == "content"
    assert job.status == "completed"
    assert run("scan", "cancel") == 0


def test_findings_show_json(run, capsys):
    run("scan", "run", "--type", "media")
    capsys.readouterr()
    assert run("findings", "show", "--json", "--severity", "all") == 0
    page = json.loads(capsys.readouterr().out)
    assert page["total_items"] == 3
    assert page["counts"] == {"error": 1, "warning": 0, "ok": 2}

    assert run("findings", "show", "job_unknown") == 1


def test_scan_status_json(run, capsys):
    run("scan", "start", "--type", "media")
    capsys.readouterr()
    assert run("scan", "status", "--json") == 0
    status = json.loads(capsys.readouterr().out)
    assert status["status"] == "running"
    assert status["type"] == "media"


def test_config_show_and_import(run, tmp_path, capsys):
    assert run("config", "show") == 0
    assert json.loads(capsys.readouterr().out)["jobs"]["media_batch_size"] == 25

    config_path = tmp_path / "config.yml"
    config_path.write_text("jobs:\n  media_batch_size: 2\n", encoding="utf-8")
    assert run("config", "import", str(config_path)) == 0
    run("config", "show")
    assert json.loads(capsys.readouterr().out)["jobs"]["media_batch_size"] == 2

    bad_path = tmp_path / "bad.yml"
    bad_path.write_text("jobs:\n  media_batch_size: zero\n", encoding="utf-8")
    assert run("config", "import", str(bad_path)) == 1


def test_quick_scan_and_migrate(run):
    assert run("quick-scan", "--limit", "5") == 0
    assert run("db", "migrate") == 0


def test_serve_runs_admin_app(run, monkeypatch):
    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setenv("AW_CORPUS_PATH", "")

    assert run("serve", "--port", "9001") == 0
    assert calls == [("altwatch.admin:app", {"host": "127.0.0.1", "port": 9001, "log_level": "info"})]
    assert os.environ["AW_CORPUS_PATH"].endswith("corpus.json")
