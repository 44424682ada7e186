"""
Leaderboard persistence for the phishing training levels.

The engine only proposes a candidate score; the stores here decide whether
it replaces the player's best (higher score wins, a faster time breaks ties).
Firestore is the primary store; a local JSON file is the fallback.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore

from config import CONFIG

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"
PROGRESS_COLLECTION = "phishing_progress"


def _record_id(user_id: str, level_id: str) -> str:
    return f"{user_id}_{level_id}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_better(candidate: dict, current: Optional[dict]) -> bool:
    """Best score wins; on equal scores the faster attempt wins."""
    if current is None:
        return True
    if candidate["score"] != current.get("score", 0):
        return candidate["score"] > current.get("score", 0)
    return candidate["elapsed_seconds"] < current.get("elapsed_seconds", float("inf"))


def build_record(user_id: str, level_id: str, attempt: dict, username: Optional[str] = None) -> dict:
    return {
        "user_id": user_id,
        "username": username or user_id,
        "level_id": level_id,
        "score": attempt["score"],
        "elapsed_seconds": attempt["elapsed_seconds"],
        "wrong_click_count": attempt["wrong_click_count"],
        "updated_at": _now_iso(),
    }


def summarize(record: Optional[dict]) -> Optional[dict]:
    """The display-only summary handed back when a level loads."""
    if record is None:
        return None
    return {
        "score": record.get("score", 0),
        "elapsed_seconds": record.get("elapsed_seconds", 0),
        "wrong_click_count": record.get("wrong_click_count", 0),
    }


def rank_records(records: Iterable[dict], limit: int) -> List[dict]:
    """Highest score first, faster time breaks ties."""
    ordered = sorted(records, key=lambda r: (-r.get("score", 0), r.get("elapsed_seconds", 0)))
    return ordered[:limit]


def build_standings(records: Iterable[dict], limit: int) -> List[dict]:
    """Sum each player's best scores across levels into a single ranking."""
    players: Dict[str, dict] = {}
    for record in records:
        user_id = record["user_id"]
        entry = players.setdefault(user_id, {
            "user_id": user_id,
            "username": record.get("username", user_id),
            "levels": {},
            "total_score": 0,
            "completed_at": None,
        })
        entry["levels"][record["level_id"]] = summarize(record)
        entry["total_score"] += record.get("score", 0)
        updated = record.get("updated_at")
        if updated and (entry["completed_at"] is None or updated > entry["completed_at"]):
            entry["completed_at"] = updated

    ordered = sorted(players.values(), key=lambda p: -p["total_score"])
    return ordered[:limit]


# ── Firestore ─────────────────────────────────────────────────

class FirestoreLeaderboard:
    """One document per (user, level) in the phishing_progress collection."""

    def __init__(self, client, collection: str = PROGRESS_COLLECTION):
        self.client = client
        self.collection = collection

    def _doc(self, user_id: str, level_id: str):
        return self.client.collection(self.collection).document(_record_id(user_id, level_id))

    def load(self, user_id: str, level_id: str) -> Optional[dict]:
        doc = self._doc(user_id, level_id).get()
        if doc.exists:
            return doc.to_dict()
        return None

    def save(self, user_id: str, level_id: str, attempt: dict, username: Optional[str] = None) -> bool:
        """Store the attempt if it beats the current best. Returns True when written."""
        doc_ref = self._doc(user_id, level_id)
        doc = doc_ref.get()
        current = doc.to_dict() if doc.exists else None
        # Current best for this player on this level, if any

        record = build_record(user_id, level_id, attempt, username)
        if not is_better(record, current):
            return False
        doc_ref.set(record)
        return True

    def top(self, level_id: str, limit: int = 10) -> List[dict]:
        query = (
            self.client.collection(self.collection)
            .where("level_id", "==", level_id)
            .order_by("score", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        return rank_records((doc.to_dict() for doc in query.stream()), limit)
        # Re-sorted locally so equal scores fall back to the faster time

    def standings(self, limit: int = 10) -> List[dict]:
        docs = self.client.collection(self.collection).stream()
        return build_standings((doc.to_dict() for doc in docs), limit)


# ── Local JSON fallback ───────────────────────────────────────

class LocalLeaderboard:
    """Keeps best attempts in a JSON file when Firestore is unavailable."""

    def __init__(self, path: str):
        self.path = str(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, dict]:
        if not os.path.exists(self.path):
            return {}
            # No file yet means an empty leaderboard
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f).get("records", {})

    def _write(self, records: Dict[str, dict]) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump({"records": records}, f, indent=2)
        os.replace(tmp_path, self.path)
        # Atomic swap so a crash never leaves a half written file

    def load(self, user_id: str, level_id: str) -> Optional[dict]:
        with self._lock:
            return self._read().get(_record_id(user_id, level_id))

    def save(self, user_id: str, level_id: str, attempt: dict, username: Optional[str] = None) -> bool:
        with self._lock:
            records = self._read()
            key = _record_id(user_id, level_id)
            record = build_record(user_id, level_id, attempt, username)
            if not is_better(record, records.get(key)):
                return False
            records[key] = record
            self._write(records)
            return True

    def top(self, level_id: str, limit: int = 10) -> List[dict]:
        with self._lock:
            records = self._read().values()
        return rank_records((r for r in records if r["level_id"] == level_id), limit)

    def standings(self, limit: int = 10) -> List[dict]:
        with self._lock:
            records = list(self._read().values())
        return build_standings(records, limit)


# ── Identity binding ──────────────────────────────────────────

class AttemptRecorder:
    """Binds a store to one player and exposes the engine's save/load contract."""

    def __init__(self, store, user_id: Optional[str] = None, username: Optional[str] = None):
        self.store = store
        self.user_id = user_id or ANONYMOUS_USER
        self.username = username

    def save_attempt(self, level_id: str, attempt: dict) -> None:
        written = self.store.save(self.user_id, level_id, attempt, self.username)
        if written:
            logger.info("New best for %s on %s: %s", self.user_id, level_id, attempt["score"])

    def load_prior_attempt(self, level_id: str) -> Optional[dict]:
        return summarize(self.store.load(self.user_id, level_id))


def init_leaderboard(config: Optional[dict] = None):
    """Connect to Firestore when configured and reachable, else use the local file."""
    config = config or CONFIG
    local_path = config["leaderboard_path"]

    if config["leaderboard_backend"] == "firestore":
        try:
            try:
                firebase_admin.get_app()
            except ValueError:
                cred_path = config["firebase_credentials"]
                if os.path.exists(cred_path):
                    firebase_admin.initialize_app(credentials.Certificate(cred_path))
                else:
                    # Fallback to default credentials (useful for some environments)
                    firebase_admin.initialize_app()
            client = firestore.client()
            logger.info("Firebase initialized successfully.")
            return FirestoreLeaderboard(client)
        except Exception as e:
            logger.warning("Error initializing Firebase: %s. Using local leaderboard at %s", e, local_path)

    return LocalLeaderboard(local_path)
