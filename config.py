"""
Runtime configuration for the phishing training backend.
Values come from the environment (a local .env file is loaded first).
"""

import os

from dotenv import load_dotenv

load_dotenv()
# Reads a .env file from the working directory, if present, into os.environ

CONFIG = {
    # Flask settings
    'secret_key': os.getenv("SECRET_KEY", "dev_secret_key"),
    'port': int(os.getenv("PORT", 5000)),

    # Leaderboard persistence
    'leaderboard_backend': os.getenv("LEADERBOARD_BACKEND", "firestore"),  # firestore | local
    'leaderboard_path': os.getenv("LEADERBOARD_PATH", "phishing_leaderboard.json"),
    'firebase_credentials': os.getenv("FIREBASE_CREDENTIALS", "serviceAccountKey.json"),
    'leaderboard_limit': int(os.getenv("LEADERBOARD_LIMIT", 10)),

    # Logging
    'log_level': os.getenv("LOG_LEVEL", "INFO").upper(),
}
