import pytest
from sqlalchemy.exc import OperationalError

from escaperoom.extensions import db
from escaperoom.game.catalog import StageCatalog
from escaperoom.game.services import EXTENSION_KEY, GameServices, get_game
from escaperoom.game.store import SqlStore

ANSWERS = {1: "apple", 2: "517", 3: "TAP_7", 4: "101010101"}


def _post(client, path, **body):
    return client.post(path, json=body)


def _answer(client, sid, stage, answer):
    return _post(client, "/api/answer", sessionId=sid, stage=stage, answer=answer)


def _clear_to_choice(client, *sids):
    for sid in sids:
        for n in range(1, 5):
            assert _answer(client, sid, n, ANSWERS[n]).get_json()["correct"] is True


# ---------------------------------------------------------------------
# stage fetch
# ---------------------------------------------------------------------

def test_first_stage_is_open(client):
    resp = client.get("/api/problem?sessionId=s1&stage=1")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["ok"] is True
    assert body["stage"] == 1
    assert body["type"] == "INPUT"
    assert body["isCleared"] is False
    assert body["currentStage"] == 1
    assert "answer" not in body


def test_locked_stage_is_blocked(client):
    resp = client.get("/api/problem?sessionId=s1&stage=3")
    assert resp.status_code == 403
    body = resp.get_json()
    assert body["status"] == "blocked"
    assert body["currentStage"] == 1


def test_stage_zero_reports_status_only(client):
    body = client.get("/api/problem?sessionId=s1&stage=0").get_json()
    assert body == {"ok": True, "finished": False, "currentStage": 1}


@pytest.mark.parametrize("query", ["stage=1", "sessionId=s1&stage=abc"])
def test_problem_bad_query(client, query):
    resp = client.get(f"/api/problem?{query}")
    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False


def test_cleared_stage_shows_answer_and_next_shows_rank(client):
    _answer(client, "s0", 1, "apple")
    _answer(client, "s1", 1, "apple")
    cleared = client.get("/api/problem?sessionId=s1&stage=1").get_json()
    assert cleared["isCleared"] is True
    assert cleared["answer"] == "APPLE"
    nxt = client.get("/api/problem?sessionId=s1&stage=2").get_json()
    assert nxt["arrivalRank"] == 2
    assert nxt["config"] == {"min": 1, "max": 1000}


# ---------------------------------------------------------------------
# answers
# ---------------------------------------------------------------------

def test_correct_answer_unlocks_next_stage(client):
    body = _answer(client, "s1", 1, " Apple ").get_json()
    assert body["correct"] is True
    assert body["hasNext"] is True
    assert body["currentStage"] == 2
    assert body["nextStage"] == 2
    assert body["arrivalRank"] == 1
    assert body["nextProblem"]["stage"] == 2
    assert "answer" not in body["nextProblem"]


def test_wrong_and_repeated_answers(client):
    wrong = _answer(client, "s1", 1, "pear").get_json()
    assert wrong["correct"] is False
    assert wrong["currentStage"] == 1

    _answer(client, "s1", 1, "apple")
    again = _answer(client, "s1", 1, "apple").get_json()
    assert again["alreadyCleared"] is True
    assert again["currentStage"] == 2


def test_updown_hints_and_bad_numbers(client):
    _answer(client, "s1", 1, "apple")
    assert _answer(client, "s1", 2, "100").get_json()["hint"] == "higher"
    assert _answer(client, "s1", 2, "900").get_json()["hint"] == "lower"
    bad = _answer(client, "s1", 2, "lots").get_json()
    assert bad["invalidFormat"] is True
    assert bad["correct"] is False


def test_answer_beyond_frontier_is_forbidden(client):
    resp = _answer(client, "s1", 3, "TAP_7")
    assert resp.status_code == 403
    body = resp.get_json()
    assert body["code"] == "not_unlocked"
    assert body["currentStage"] == 1


def test_answer_on_choice_stage_is_rejected(client):
    _clear_to_choice(client, "s1")
    resp = _answer(client, "s1", 5, "A")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "not_group_choice"


@pytest.mark.parametrize("body", [
    {"stage": 1, "answer": "x"},
    {"sessionId": "s1", "answer": "x"},
    {"sessionId": "s1", "stage": 1},
    {"sessionId": "s1", "stage": 0, "answer": "x"},
    {"sessionId": "s1", "stage": True, "answer": "apple"},
    {"sessionId": "s1", "stage": 1.9, "answer": "apple"},
])
def test_answer_bad_fields(client, body):
    assert client.post("/api/answer", json=body).status_code == 400


def test_answer_needs_json_object(client):
    resp = client.post("/api/answer", data="not json", content_type="text/plain")
    assert resp.status_code == 400


def test_reset_keeps_the_ledger(client, app):
    _answer(client, "s1", 1, "apple")
    _answer(client, "s1", 2, "517")
    body = _post(client, "/api/reset", sessionId="s1").get_json()
    assert body["currentStage"] == 1
    assert client.get("/api/problem?sessionId=s1&stage=2").status_code == 403
    with app.app_context():
        assert get_game().store.stage_counts() == {1: 1, 2: 1}


def test_finishing_the_last_stage(client, app, clock):
    with app.app_context():
        catalog = StageCatalog.from_dicts([{"stage": 1, "answer": "only"}])
        app.extensions[EXTENSION_KEY] = GameServices(SqlStore(db), catalog, clock=clock)

    body = _answer(client, "s1", 1, "only").get_json()
    assert body["finished"] is True
    assert body["hasNext"] is False
    assert body["arrivalRank"] == 1
    assert body["clearImageUrl"] == "/img/clear.png"

    assert client.get("/api/problem?sessionId=s1&stage=2").get_json()["finished"] is True
    assert client.get("/api/problem?sessionId=s1&stage=0").get_json()["finished"] is True


# ---------------------------------------------------------------------
# group choice
# ---------------------------------------------------------------------

def test_choice_round_end_to_end(client, clock):
    _clear_to_choice(client, "s1", "s2", "s3")

    receipt = _post(client, "/api/choiceVote", sessionId="s1", stage=5, option="A").get_json()
    assert receipt["recorded"] is True
    assert receipt["windowMs"] == 60000
    assert receipt["windowEndMs"] == receipt["roundId"] + 60000
    again = _post(client, "/api/choiceVote", sessionId="s1", stage=5, option="A").get_json()
    assert again["recorded"] is False
    _post(client, "/api/choiceVote", sessionId="s2", stage=5, option="A")
    _post(client, "/api/choiceVote", sessionId="s3", stage=5, option="B")

    pending = _post(client, "/api/choiceResult", sessionId="s1").get_json()
    assert pending["status"] == "PENDING"
    assert pending["waitMs"] == 60000

    clock.advance(60000)
    win = _post(client, "/api/choiceResult", sessionId="s3").get_json()
    assert win["status"] == "WIN"
    assert win["winningOption"] == "B"
    assert win["counts"] == {"A": 2, "B": 1}
    assert win["currentStage"] == 6
    assert win["nextStage"] == 6
    assert win["finished"] is False

    lose = _post(client, "/api/choiceResult", sessionId="s1").get_json()
    assert lose["status"] == "LOSE"
    assert lose["currentStage"] == 5
    assert "nextStage" not in lose

    # the loser may vote again in the new window
    retry = _post(client, "/api/choiceVote", sessionId="s1", stage=5, option="B").get_json()
    assert retry["roundId"] == receipt["roundId"] + 60000


def test_choice_tie_advances_everyone(client, clock):
    _clear_to_choice(client, "s1", "s2")
    _post(client, "/api/choiceVote", sessionId="s1", stage=5, option="A")
    _post(client, "/api/choiceVote", sessionId="s2", stage=5, option="B")
    clock.advance(60000)
    for sid in ("s1", "s2"):
        body = _post(client, "/api/choiceResult", sessionId=sid).get_json()
        assert body["status"] == "DRAW"
        assert body["currentStage"] == 6


def test_choice_vote_errors(client):
    resp = _post(client, "/api/choiceVote", sessionId="s1", stage=5, option="A")
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "not_current_stage"

    _clear_to_choice(client, "s1")
    resp = _post(client, "/api/choiceVote", sessionId="s1", stage=5, option="Z")
    assert resp.status_code == 400
    assert resp.get_json()["options"] == ["A", "B"]

    _post(client, "/api/choiceVote", sessionId="s1", stage=5, option="A")
    resp = _post(client, "/api/choiceVote", sessionId="s1", stage=5, option="B")
    assert resp.status_code == 409

    assert _post(client, "/api/choiceVote", sessionId="s1", stage=5).status_code == 400


def test_choice_result_without_vote(client):
    resp = _post(client, "/api/choiceResult", sessionId="s1")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "no_pending_vote"


def test_reset_drops_a_pending_vote(client):
    _clear_to_choice(client, "s1")
    _post(client, "/api/choiceVote", sessionId="s1", stage=5, option="A")
    _post(client, "/api/reset", sessionId="s1")
    assert _post(client, "/api/choiceResult", sessionId="s1").status_code == 400


# ---------------------------------------------------------------------
# names, players, leaderboard
# ---------------------------------------------------------------------

def test_display_names(client):
    ok = _post(client, "/api/name", sessionId="s1", name="Ada")
    assert ok.get_json() == {"ok": True, "name": "Ada"}
    taken = _post(client, "/api/name", sessionId="s2", name="ada")
    assert taken.status_code == 409
    bad = _post(client, "/api/name", sessionId="s2", name="!")
    assert bad.status_code == 400
    assert bad.get_json()["code"] == "invalid_name"


def test_register_player_disabled_by_default(client):
    resp = _post(client, "/api/registerPlayer", sessionId="s1", playerCode="X1")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "PLAYER_MODE_DISABLED"


def test_player_mode_flow(client, app):
    with app.app_context():
        game = get_game()
        game.players.player_mode = True
        game.engine.player_mode = True
        game.players.import_roster([{"code": "X1", "name": "Ada", "team": "red"}])

    resp = _answer(client, "s1", 1, "apple")
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "registration_required"

    missing = _post(client, "/api/registerPlayer", sessionId="s1", playerCode="NOPE")
    assert missing.status_code == 404
    blank = _post(client, "/api/registerPlayer", sessionId="s1", playerCode="")
    assert blank.get_json()["needsReset"] is True

    body = _post(client, "/api/registerPlayer", sessionId="s1", playerCode="X1").get_json()
    assert body == {"ok": True, "playerCode": "X1", "playerName": "Ada", "playerTeam": "red"}
    used = _post(client, "/api/registerPlayer", sessionId="s2", playerCode="X1")
    assert used.status_code == 409
    assert used.get_json()["code"] == "PLAYER_ALREADY_USED"

    assert _answer(client, "s1", 1, "apple").get_json()["correct"] is True
    rows = client.get("/api/leaderboard?stage=1").get_json()["rows"]
    assert rows[0]["name"] == "Ada"


def test_leaderboard(client):
    _post(client, "/api/name", sessionId="s1", name="Ada")
    _answer(client, "s1", 1, "apple")
    _answer(client, "s2", 1, "apple")
    body = client.get("/api/leaderboard?stage=1&limit=10").get_json()
    assert body["stage"] == 1
    assert [(r["rank"], r["name"]) for r in body["rows"]] == [(1, "Ada"), (2, "Guest")]
    assert client.get("/api/leaderboard?stage=1&limit=1").get_json()["rows"][0]["rank"] == 1
    assert client.get("/api/leaderboard?stage=2").get_json()["rows"] == []


def test_whole_number_float_stage_is_accepted(client):
    assert _answer(client, "s1", 1.0, "apple").get_json()["correct"] is True


def test_boolean_stage_vote_is_rejected(client):
    _clear_to_choice(client, "s1")
    resp = _post(client, "/api/choiceVote", sessionId="s1", stage=True, option="A")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "invalid_request"


def test_failed_clear_write_leaves_the_stage_open(client, monkeypatch):
    original = SqlStore._record_clear
    calls = []

    def flaky(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError("UPDATE escape_stage_clears", {}, Exception("database is locked"))
        return original(self, *args, **kwargs)

    monkeypatch.setattr(SqlStore, "_record_clear", flaky)

    resp = _answer(client, "s1", 1, "apple")
    assert resp.status_code == 500
    assert resp.get_json()["code"] == "server_error"
    assert client.get("/api/problem?sessionId=s1&stage=0").get_json()["currentStage"] == 1

    retry = _answer(client, "s1", 1, "apple").get_json()
    assert retry["correct"] is True
    assert retry["arrivalRank"] == 1
    assert retry["currentStage"] == 2
