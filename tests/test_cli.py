import json

import cli


class _Resp:
    def __init__(self, payload, ok=True):
        self._payload = payload
        self.ok = ok

    def json(self):
        return self._payload


def test_apply_puts_file_contents(monkeypatch, tmp_path, capsys):
    spec = {"name": "web", "space": "space-1", "url": "file:///srv/app.zip"}
    path = tmp_path / "web.json"
    path.write_text(json.dumps(spec))
    seen = {}

    def fake_put(url, json=None, timeout=None):
        seen["url"] = url
        seen["json"] = json
        return _Resp({"id": "app-1"})

    monkeypatch.setattr(cli.requests, "put", fake_put)

    assert cli.main(["--api", "http://api.test/", "apply", "web", "--file", str(path)]) == 0
    assert seen == {"url": "http://api.test/apps/web", "json": spec}
    assert '"app-1"' in capsys.readouterr().out


def test_failed_delete_exits_non_zero(monkeypatch):
    monkeypatch.setattr(cli.requests, "delete", lambda url, timeout=None: _Resp({"detail": "Unknown application"}, ok=False))
    assert cli.main(["delete", "web"]) == 1
