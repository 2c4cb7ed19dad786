import pytest
from fastapi.testclient import TestClient

from disc_league import api

SECRET = "course-key"
ADMIN = {"X-Admin-Secret": SECRET}


@pytest.fixture()
def client(tmp_path, monkeypatch) -> TestClient:
    monkeypatch.setattr(api, "service", api.LeagueService(data_dir=tmp_path, admin_secret=SECRET))
    client = TestClient(api.app)
    response = client.post("/api/leagues", json={"league_id": "club", "display_name": "Club"}, headers=ADMIN)
    assert response.status_code == 200
    return client


def test_health(client: TestClient) -> None:
    assert client.get("/api/health").json() == {"status": "ok"}


def test_admin_secret_required(client: TestClient) -> None:
    assert client.post("/api/leagues/club/doubles/lock-format").status_code == 403
    wrong = client.post("/api/leagues/club/doubles/lock-format", headers={"X-Admin-Secret": "nope"})
    assert wrong.status_code == 403
    assert client.get("/api/leagues/club").json()["doubles_stage"] == "unlocked"


def test_late_players_and_start_holes_need_admin(client: TestClient) -> None:
    for name in ["Ann", "Ben", "Cy", "Dee"]:
        client.post("/api/leagues/club/doubles/checkins", json={"name": name})
    client.post("/api/leagues/club/doubles/lock-format", headers=ADMIN)
    card_id = client.post("/api/leagues/club/doubles/start", headers=ADMIN).json()["cards"][0]["id"]

    slot_url = f"/api/leagues/club/doubles/cards/{card_id}/start-slot"
    assert client.post(slot_url, json={"slot": 9}).status_code == 403
    late = client.post("/api/leagues/club/doubles/late-players", json={"name": "Eve"})
    assert late.status_code == 403
    view = client.get("/api/leagues/club/doubles").json()
    assert view["cards"][0]["start_slot"] == 1
    assert all(p["name"] != "Eve" for p in view["players"])

    assert client.post(slot_url, json={"slot": 9}, headers=ADMIN).json() == {"start_slot": 9}
    added = client.post("/api/leagues/club/doubles/late-players", json={"name": "Eve"}, headers=ADMIN)
    assert added.json()["player"]["late"] is True


def test_unknown_league_is_404(client: TestClient) -> None:
    assert client.get("/api/leagues/nowhere/doubles").status_code == 404


def test_ladder_routes(client: TestClient) -> None:
    ann = client.post("/api/leagues/club/ladder/players", json={"name": "Ann"}).json()
    ben = client.post("/api/leagues/club/ladder/players", json={"name": "Ben"}).json()
    preview = client.post("/api/leagues/club/ladder/preview", json={"scores": {ann["id"]: 58, ben["id"]: 52}})
    assert [row["name"] for row in preview.json()["standings"]] == ["Ben", "Ann"]
    assert client.get("/api/leagues/club/ladder").json()["standings"][0]["name"] == "Ann"

    recorded = client.post("/api/leagues/club/ladder/rounds", json={"scores": {ann["id"]: 58, ben["id"]: 52}}).json()
    assert recorded["standings"][0]["name"] == "Ben"
    results = client.get(f"/api/leagues/club/ladder/rounds/{recorded['round_id']}").json()
    assert [row["rank"] for row in results["rows"]] == [1, 2]
    history = client.get(f"/api/leagues/club/ladder/players/{ann['id']}/history").json()
    assert history["tags"] == [2]


def test_league_errors_are_400(client: TestClient) -> None:
    client.post("/api/leagues/club/doubles/checkins", json={"name": "Ann"})
    duplicate = client.post("/api/leagues/club/doubles/checkins", json={"name": "ann"})
    assert duplicate.status_code == 400
    assert duplicate.json()["reason"] == "duplicate_name"

    client.post("/api/leagues/club/doubles/lock-format", headers=ADMIN)
    started = client.post("/api/leagues/club/doubles/start", headers=ADMIN)
    assert started.status_code == 400
    assert started.json()["reason"] == "not_enough_players"


def test_doubles_flow(client: TestClient) -> None:
    for name in ["Ann", "Ben", "Cy", "Dee", "Eve"]:
        assert client.post("/api/leagues/club/doubles/checkins", json={"name": name}).status_code == 200
    client.post("/api/leagues/club/doubles/settings", json={"layout_note": "Long tees"}, headers=ADMIN)
    assert client.post("/api/leagues/club/doubles/lock-format", headers=ADMIN).json()["changed"] is True
    view = client.post("/api/leagues/club/doubles/start", headers=ADMIN).json()
    assert view["stage"] == "check_in_locked"
    assert view["settings"]["layout_note"] == "Long tees"
    card = view["cards"][0]
    keys = [{"kind": "team", "id": team_id} for team_id in card["team_ids"]]
    keys.append({"kind": "floating", "id": card["floating_id"]})

    blocked = client.post(f"/api/leagues/club/doubles/cards/{card['id']}/submit")
    assert blocked.status_code == 400
    assert blocked.json()["reason"] == "missing_scores"

    for value, key in zip([-3, "1", 0], keys):
        payload = {"card_id": card["id"], "key": key, "round": 1, "value": value}
        assert client.post("/api/leagues/club/doubles/scores", json=payload).status_code == 200
    submitted = client.post(f"/api/leagues/club/doubles/cards/{card['id']}/submit").json()
    assert submitted == {"changed": True, "submitted_through": 1}

    adjusted = client.post(
        "/api/leagues/club/doubles/adjustments",
        json={"key": keys[2], "final_score": -5},
        headers=ADMIN,
    ).json()
    assert [row["final_score"] for row in adjusted["rows"]] == [-5, -3, 1]
    assert adjusted["rows"][0]["key"] == keys[2]

    finalized = client.post("/api/leagues/club/doubles/finalize", headers=ADMIN).json()
    assert finalized["stage"] == "finalized"
    assert client.get("/api/leagues/club/report").text.startswith("Club")


def test_putting_flow_and_clone(client: TestClient) -> None:
    ids = []
    for name, pool in [("Ann", "A"), ("Ben", "B"), ("Cy", "A")]:
        ids.append(client.post("/api/leagues/club/putting/checkins", json={"name": name, "group": pool}).json()["id"])
    client.post("/api/leagues/club/putting/settings", json={"total_rounds": 2}, headers=ADMIN)
    view = client.post("/api/leagues/club/putting/cards", json={"player_ids": ids}, headers=ADMIN).json()
    card_id = view["cards"][0]["id"]
    assert client.post("/api/leagues/club/putting/begin", headers=ADMIN).json()["stage"] == "locked"
    for player_id, made in zip(ids, [3, 4, 3]):
        payload = {"card_id": card_id, "player_id": player_id, "station": 1, "value": made}
        assert client.post("/api/leagues/club/putting/scores", json=payload).json() == {"stored": made}
    submitted = client.post(f"/api/leagues/club/putting/cards/{card_id}/submit").json()
    assert submitted == {"changed": True, "round": 1, "missing_cards": []}
    boards = client.get("/api/leagues/club/putting/leaderboards").json()["boards"]
    assert [row["rank"] for row in boards["A"]] == [1, 1]
    assert boards["B"][0]["final_score"] == 5

    assert client.post("/api/leagues/club/putting/next-round").status_code == 403
    second = client.post("/api/leagues/club/putting/next-round", headers=ADMIN).json()
    assert second["current_round"] == 2
    assert second["cards"][0]["player_ids"][0] == ids[1]
    assert second["missing_cards"] == ["Card 1"]

    cloned = client.post("/api/leagues/club/clone", json={"target_id": "club-2"}, headers=ADMIN)
    assert cloned.status_code == 200
    assert cloned.json()["putting_stage"] == "locked"
    assert client.get("/api/leagues/club-2/putting").json()["current_round"] == 2
    again = client.post("/api/leagues/club/clone", json={"target_id": "club-2"}, headers=ADMIN)
    assert again.status_code == 400
    assert again.json()["reason"] == "league_exists"
