import pytest

ADMIN = {"X-Admin-Password": "letmein"}


def _answer(client, sid, stage, answer):
    return client.post("/api/answer", json={"sessionId": sid, "stage": stage, "answer": answer})


@pytest.mark.parametrize("headers", [{}, {"X-Admin-Password": "nope"}])
def test_admin_requires_password(client, headers):
    for method, path in [("get", "/api/admin/stats"), ("post", "/api/admin/resetStats"),
                         ("post", "/api/admin/players")]:
        resp = getattr(client, method)(path, headers=headers)
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "unauthorized"


def test_unset_password_locks_admin(app, client):
    app.config["ESCAPE_ADMIN_PASSWORD"] = ""
    assert client.get("/api/admin/stats", headers={"X-Admin-Password": ""}).status_code == 401


def test_stats(client):
    client.post("/api/name", json={"sessionId": "s1", "name": "Ada"})
    _answer(client, "s1", 1, "apple")
    _answer(client, "s2", 1, "apple")
    _answer(client, "s2", 2, "517")

    resp = client.get("/api/admin/stats", headers=ADMIN)
    assert resp.status_code == 200
    assert resp.headers["X-Robots-Tag"] == "noindex, nofollow"
    body = resp.get_json()
    assert body["participants"] == 2
    assert body["maxStage"] == 7
    stages = {s["stage"]: s for s in body["stages"]}
    assert stages[1]["clearedCount"] == 2
    assert stages[1]["clearers"] == ["Ada", "Guest"]
    assert stages[2]["clearedCount"] == 1
    assert stages[2]["clearers"] == ["Guest"]
    assert stages[3]["clearers"] == []
    assert stages[7]["isFinal"] is True
    assert stages[1]["isFinal"] is False
    assert stages[2]["challengers"] == ["Ada"]
    assert stages[3]["challengers"] == ["s2"]
    assert stages[5]["type"] == "CHOICE"


def test_reset_stats_wipes_everything(client):
    _answer(client, "s1", 1, "apple")
    body = client.post("/api/admin/resetStats", headers=ADMIN).get_json()
    assert body["ok"] is True
    assert body["removed"]["participants"] == 1

    stats = client.get("/api/admin/stats", headers=ADMIN).get_json()
    assert stats["participants"] == 0
    assert all(s["clearedCount"] == 0 for s in stats["stages"])
    # the next request starts over at stage 1
    assert client.get("/api/problem?sessionId=s1&stage=0").get_json()["currentStage"] == 1


@pytest.mark.parametrize("payload", [
    [{"code": "X1", "name": "Ada"}, {"code": "X2", "name": "Bo"}],
    {"players": [{"code": "X1", "name": "Ada"}, {"code": "X2", "name": "Bo"}]},
])
def test_import_players(client, payload):
    body = client.post("/api/admin/players", json=payload, headers=ADMIN).get_json()
    assert body == {"ok": True, "imported": 2}


def test_import_players_rejects_garbage(client):
    resp = client.post("/api/admin/players", json={"nope": 1}, headers=ADMIN)
    assert resp.status_code == 400
    resp = client.post("/api/admin/players", json=[{"name": "no code"}], headers=ADMIN)
    assert resp.status_code == 400
