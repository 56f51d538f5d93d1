import json

from ghbridge import cli


class _R:
    def __init__(self, payload, ok=True):
        self._p = payload
        self.ok = ok
        self.text = json.dumps(payload)

    def json(self):
        return self._p


def _no_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda *a, **k: None)


def test_ask_posts_prompt(monkeypatch, capsys):
    _no_logging(monkeypatch)
    calls = []

    def fake_post(url, headers, data, timeout):
        calls.append((url, json.loads(data)))
        return _R({"llmResponse": "done"})

    monkeypatch.setattr("requests.post", fake_post)
    rc = cli.main(["ask", "cherry-pick #12 to release", "--url", "http://agent.local/api/agent"])

    assert rc == 0
    assert calls == [("http://agent.local/api/agent", {"prompt": "cherry-pick #12 to release"})]
    assert json.loads(capsys.readouterr().out) == {"llmResponse": "done"}


def test_ask_error_status(monkeypatch):
    _no_logging(monkeypatch)
    monkeypatch.setattr("requests.post", lambda *a, **k: _R({"error": "Prompt is required"}, ok=False))
    assert cli.main(["ask", "x"]) == 1


def test_jobs_and_worker_once(monkeypatch, capsys, temp_db_path):
    _no_logging(monkeypatch)
    monkeypatch.setattr(cli.settings, "DB_PATH", temp_db_path)
    monkeypatch.setattr("ghbridge.core.db._DEFAULT", None)

    assert cli.main(["init-db"]) == 0
    assert temp_db_path.exists()
    assert cli.main(["worker", "--once"]) == 0
    assert capsys.readouterr().out.strip().endswith("empty")

    assert cli.main(["jobs"]) == 0
    err = capsys.readouterr().err
    assert json.loads(err.strip().splitlines()[-1])["queued"] == 0


def test_no_command_prints_help(monkeypatch):
    _no_logging(monkeypatch)
    assert cli.main([]) == 2
