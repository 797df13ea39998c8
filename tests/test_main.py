"""Tests for application wiring and the command line entry point."""

import sys
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from dsmr_exporter import main
from dsmr_exporter.config import load_config


def test_lifespan_serves_metrics_and_stops_backend(monkeypatch):
    config = load_config(
        overrides={"serial.device": "/dev/ttyUSB0", "backoff.initial_interval": 5.0}
    )
    monkeypatch.setattr(main, "_config", config)
    opener = AsyncMock(side_effect=OSError("no such device"))

    with patch("serial_asyncio.open_serial_connection", opener):
        with TestClient(main.app) as c:
            resp = c.get("/metrics")
            # No telegram decoded yet, so nothing is fresh
            assert resp.status_code == 200
            assert resp.text == ""
            assert c.get("/other").status_code == 404


def test_lifespan_requires_config(monkeypatch):
    monkeypatch.setattr(main, "_config", None)

    with pytest.raises(RuntimeError, match="Configuration not loaded"):
        with TestClient(main.app):
            pass


def test_run_without_device_exits(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["dsmr-exporter"])

    with patch("uvicorn.run") as uvicorn_run:
        with pytest.raises(SystemExit) as exc_info:
            main.run()

    assert exc_info.value.code == 2
    assert "serial" in capsys.readouterr().err
    uvicorn_run.assert_not_called()


def test_run_passes_cli_options_to_uvicorn(monkeypatch):
    monkeypatch.setattr(
        sys, "argv", ["dsmr-exporter", "/dev/ttyUSB0", "--host", "0.0.0.0", "--port", "9100"]
    )
    monkeypatch.setattr(main, "_config", None)

    with patch("uvicorn.run") as uvicorn_run:
        main.run()

    uvicorn_run.assert_called_once_with(
        main.app,
        host="0.0.0.0",
        port=9100,
        timeout_graceful_shutdown=5.0,
        log_level="info",
    )
    assert main._config.serial.device == "/dev/ttyUSB0"


def test_run_with_broken_yaml_exits(monkeypatch, tmp_path, capsys):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("serial:\n  device: [unclosed\n")
    monkeypatch.setattr(sys, "argv", ["dsmr-exporter", "-c", str(config_file)])

    with patch("uvicorn.run") as uvicorn_run:
        with pytest.raises(SystemExit) as exc_info:
            main.run()

    assert exc_info.value.code == 2
    assert "error:" in capsys.readouterr().err
    uvicorn_run.assert_not_called()
