# backend/stockledger/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "strict": inventory failures abort the order transition.
    # "best_effort": storage failures in the inventory step are logged and the status change commits.
    INVENTORY_FAILURE_POLICY = os.environ.get("INVENTORY_FAILURE_POLICY", "strict")

    # "floor": on-hand never goes below zero, the ledger keeps the requested amount.
    # "reject": fulfillment fails when on-hand is short.
    STOCK_SHORTFALL_POLICY = os.environ.get("STOCK_SHORTFALL_POLICY", "floor")

    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
