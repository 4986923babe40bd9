from __future__ import annotations

import json

from fleetgate_cli import cli


def test_cli_status(monkeypatch, capsys):
    captured = {}

    def fake_request(method, url, payload=None, timeout=30):
        captured["url"] = url
        return {"status": "ok", "service": "fleetgate-fleet"}

    monkeypatch.setattr(cli, "_request_json", fake_request)
    code = cli.main(["status", "--service-url", "http://fleet.local:9000/"])
    assert code == 0
    assert captured["url"] == "http://fleet.local:9000/health"
    assert json.loads(capsys.readouterr().out)["status"] == "ok"


def test_cli_devices_uses_env_url(monkeypatch, capsys):
    captured = {}

    def fake_request(method, url, payload=None, timeout=30):
        captured["method"] = method
        captured["url"] = url
        return [{"id": "d1", "identifier": "unit-1"}]

    monkeypatch.setenv("FLEETGATE_SERVICE_URL", "http://fleet.env:8080")
    monkeypatch.setattr(cli, "_request_json", fake_request)
    code = cli.main(["devices", "--org-id", "org-1"])
    assert code == 0
    assert captured["method"] == "GET"
    assert captured["url"] == "http://fleet.env:8080/fleet/devices?org_id=org-1"
    assert "unit-1" in capsys.readouterr().out


def test_cli_resolve(monkeypatch, capsys):
    captured = {}

    def fake_request(method, url, payload=None, timeout=30):
        captured["url"] = url
        return {"update_available": False}

    monkeypatch.delenv("FLEETGATE_SERVICE_URL", raising=False)
    monkeypatch.setattr(cli, "_request_json", fake_request)
    code = cli.main(["resolve", "--device-id", "d1"])
    assert code == 0
    assert captured["url"] == "http://localhost:8080/fleet/devices/d1/update"
    assert json.loads(capsys.readouterr().out) == {"update_available": False}


def test_cli_reports_http_errors(monkeypatch, capsys):
    def fake_request(method, url, payload=None, timeout=30):
        raise RuntimeError("HTTP 404 {'detail': 'Device not found'}")

    monkeypatch.setattr(cli, "_request_json", fake_request)
    code = cli.main(["resolve", "--device-id", "missing"])
    assert code == 1
    assert "Device not found" in capsys.readouterr().err


def test_cli_without_command_prints_help(capsys):
    assert cli.main([]) == 2
    assert "fleetgate" in capsys.readouterr().out
