"""Tests for the Prometheus scrape endpoint."""

import time

from fastapi.testclient import TestClient

from dsmr_exporter.exceptions import EncodingFailure
from dsmr_exporter.main import app
from dsmr_exporter.telegram import Telegram


def test_stale_store_returns_empty_body(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.text == ""


def test_fresh_store_returns_metrics(client, store):
    store.update(Telegram(power_delivered=1.5))

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "power_delivered_watts 1500.0" in resp.text
    assert "energy_tariff" in resp.text


def test_expired_store_returns_empty_body(client, store):
    store.update(Telegram(power_delivered=1.5))
    store.last_update = time.monotonic() - store.ttl - 1

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.text == ""


def test_encoding_failure_returns_500(client, store, monkeypatch):
    store.update(Telegram(power_delivered=1.5))

    def broken() -> str:
        raise EncodingFailure("boom")

    monkeypatch.setattr(store, "encode", broken)

    resp = client.get("/metrics")
    assert resp.status_code == 500


def test_unknown_path_returns_not_found():
    c = TestClient(app)
    resp = c.get("/does-not-exist")
    assert resp.status_code == 404
    assert resp.text == "not found"


def test_custom_path(store):
    from fastapi import FastAPI

    from dsmr_exporter.frontends import create_frontend

    frontend = create_frontend("prometheus", store, {"path": "/scrape"})
    test_app = FastAPI()
    test_app.include_router(frontend.get_router())
    store.update(Telegram(power_received=0.1))

    with TestClient(test_app) as c:
        assert "power_received_watts 100.0" in c.get("/scrape").text
        assert c.get("/metrics").status_code == 404
