import json

import pytest

from leaderboard import (
    ANONYMOUS_USER,
    AttemptRecorder,
    FirestoreLeaderboard,
    LocalLeaderboard,
    init_leaderboard,
    is_better,
)


def attempt(score, elapsed=10, wrong=0):
    return {"score": score, "elapsed_seconds": elapsed, "wrong_click_count": wrong}


# ── In-memory Firestore double ────────────────────────────────

class FakeSnapshot:
    def __init__(self, data):
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data)


class FakeDocRef:
    def __init__(self, store, doc_id):
        self.store = store
        self.doc_id = doc_id

    def get(self):
        return FakeSnapshot(self.store.get(self.doc_id))

    def set(self, data):
        self.store[self.doc_id] = dict(data)


class FakeCollection:
    def __init__(self):
        self.docs = {}

    def document(self, doc_id):
        return FakeDocRef(self.docs, doc_id)

    def stream(self):
        return [FakeSnapshot(d) for d in self.docs.values()]


class FakeFirestore:
    def __init__(self):
        self.collections = {}

    def collection(self, name):
        return self.collections.setdefault(name, FakeCollection())


@pytest.fixture
def local_store(tmp_path):
    return LocalLeaderboard(tmp_path / "board.json")


def test_is_better_prefers_score_then_time():
    assert is_better(attempt(10), None)
    assert is_better(attempt(20), attempt(10))
    assert not is_better(attempt(5), attempt(10))
    assert is_better(attempt(10, elapsed=5), attempt(10, elapsed=8))
    assert not is_better(attempt(10, elapsed=8), attempt(10, elapsed=8))


def test_local_best_score_wins(local_store):
    assert local_store.save("u1", "social-feed", attempt(800))
    assert not local_store.save("u1", "social-feed", attempt(600))
    assert local_store.save("u1", "social-feed", attempt(900, elapsed=12))
    record = local_store.load("u1", "social-feed")
    assert record["score"] == 900
    assert record["elapsed_seconds"] == 12
    assert record["updated_at"]


def test_local_file_is_json(local_store):
    local_store.save("u1", "social-feed", attempt(500))
    with open(local_store.path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["records"]["u1_social-feed"]["score"] == 500


def test_local_top_is_per_level_and_ranked(local_store):
    local_store.save("u1", "social-feed", attempt(700, elapsed=20))
    local_store.save("u2", "social-feed", attempt(900))
    local_store.save("u3", "social-feed", attempt(700, elapsed=15))
    local_store.save("u4", "security-gauntlet", attempt(1000))

    top = local_store.top("social-feed", limit=2)
    assert [r["user_id"] for r in top] == ["u2", "u3"]


def test_standings_sum_levels(local_store):
    local_store.save("u1", "social-feed", attempt(900))
    local_store.save("u1", "security-gauntlet", attempt(1100))
    local_store.save("u2", "social-feed", attempt(950))

    standings = local_store.standings()
    assert [(p["user_id"], p["total_score"]) for p in standings] == [("u1", 2000), ("u2", 950)]
    assert set(standings[0]["levels"]) == {"social-feed", "security-gauntlet"}


def test_firestore_best_score_wins():
    client = FakeFirestore()
    store = FirestoreLeaderboard(client)
    assert store.save("u1", "cyber-defense", attempt(7), username="Ada")
    assert not store.save("u1", "cyber-defense", attempt(6))
    assert store.save("u1", "cyber-defense", attempt(9))

    docs = client.collection("phishing_progress").docs
    assert list(docs) == ["u1_cyber-defense"]
    assert store.load("u1", "cyber-defense")["score"] == 9
    assert store.load("u2", "cyber-defense") is None


def test_firestore_standings():
    store = FirestoreLeaderboard(FakeFirestore())
    store.save("u1", "social-feed", attempt(800))
    store.save("u2", "social-feed", attempt(900))
    store.save("u2", "cyber-defense", attempt(8))
    assert [p["user_id"] for p in store.standings()] == ["u2", "u1"]


def test_recorder_binds_anonymous_user(local_store):
    recorder = AttemptRecorder(local_store)
    assert recorder.user_id == ANONYMOUS_USER
    assert recorder.load_prior_attempt("social-feed") is None

    recorder.save_attempt("social-feed", attempt(880, elapsed=10, wrong=2))
    assert recorder.load_prior_attempt("social-feed") == {
        "score": 880, "elapsed_seconds": 10, "wrong_click_count": 2,
    }


def test_init_leaderboard_local_backend(tmp_path):
    path = str(tmp_path / "lb.json")
    store = init_leaderboard({
        "leaderboard_backend": "local",
        "leaderboard_path": path,
        "firebase_credentials": "missing.json",
    })
    assert isinstance(store, LocalLeaderboard)
    assert store.path == path
