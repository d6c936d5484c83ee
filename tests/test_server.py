import base64

import pytest
from fastapi.testclient import TestClient

from appsweep import server
from appsweep.transport import encode

from conftest import BUNDLE_ID


@pytest.fixture
def client():
    return TestClient(server.app)


def app_body(bundle=""):
    return {"bundle_path": bundle, "display_name": "TestApp", "bundle_identifier": BUNDLE_ID}


def test_healthz(client):
    body = client.get("/healthz").json()

    assert body["status"] == "ok"
    assert body["data"]["service"] == "appsweep"


def test_preview_returns_capped_lines_and_token(client, home, leftovers):
    resp = client.post("/api/v1/preview", json={"apps": [app_body()], "cap": 2, "home": str(home)})

    assert resp.status_code == 200
    item = resp.json()["data"][0]
    assert item["lines"][-1] == "+3 more files"
    assert len(item["lines"]) == 4
    decoded = base64.b64decode(item["token"]).decode("utf-8").split("\n")
    assert sorted(decoded) == sorted(str(p) for p in leftovers)


def test_preview_without_apps_is_rejected(client):
    resp = client.post("/api/v1/preview", json={"apps": []})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "BAD_REQUEST"


def test_unconfirmed_uninstall_changes_nothing(client, home, leftovers):
    token = encode([str(p) for p in leftovers])

    resp = client.post(
        "/api/v1/uninstall",
        json={"app": app_body(), "token": token, "execute": True, "confirm": False, "home": str(home)},
    )

    body = resp.json()
    assert resp.status_code == 200
    assert body["data"]["status"] == "cancelled"
    assert body["meta"]["state"] == "cancelled"
    assert all(p.exists() for p in leftovers)


def test_confirmed_uninstall_removes_token_paths_and_bundle(client, home, leftovers, make_bundle):
    bundle = make_bundle()
    token = encode([str(p) for p in leftovers])

    resp = client.post(
        "/api/v1/uninstall",
        json={
            "app": app_body(str(bundle)),
            "token": token,
            "execute": True,
            "confirm": True,
            "terminate_processes": False,
            "home": str(home),
        },
    )

    data = resp.json()["data"]
    assert data["status"] == "ok"
    assert data["files_removed"] == len(leftovers) + 1
    assert not bundle.exists()
    assert all(not p.exists() for p in leftovers)


def test_uninstall_is_dry_run_unless_execute(client, home, leftovers):
    resp = client.post(
        "/api/v1/uninstall",
        json={"app": app_body(), "token": encode([str(leftovers[0])]), "home": str(home)},
    )

    assert resp.json()["data"]["mode"] == "dry_run"
    assert leftovers[0].exists()


def test_bad_token_maps_to_decode_error(client):
    resp = client.post("/api/v1/uninstall", json={"app": app_body(), "token": "***"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "DECODE_ERROR"


def test_relative_path_maps_to_validation_error(client):
    token = base64.b64encode(b"/ok\nnot/absolute").decode()

    resp = client.post("/api/v1/uninstall", json={"app": app_body(), "token": token, "label": "ui-step"})

    error = resp.json()["error"]
    assert resp.status_code == 400
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"] == {"label": "ui-step", "line": "not/absolute"}


@pytest.mark.parametrize("route", ["/api/v1/preview", "/api/v1/uninstall"])
def test_relative_bundle_path_is_rejected_before_any_work(client, home, leftovers, route):
    app = app_body("TestApp.app")
    if route.endswith("preview"):
        payload = {"apps": [app], "home": str(home)}
    else:
        payload = {"app": app, "token": encode([str(leftovers[0])]), "execute": True, "home": str(home)}

    resp = client.post(route, json=payload)

    error = resp.json()["error"]
    assert resp.status_code == 400
    assert error["code"] == "INVALID_REQUEST"
    assert any("bundle_path" in e["loc"] for e in error["details"]["errors"])
    assert all(p.exists() for p in leftovers)
