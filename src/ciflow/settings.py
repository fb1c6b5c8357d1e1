from __future__ import annotations
import os

DATABASE_URL = os.environ.get("CIFLOW_DATABASE_URL", "sqlite:///.ciflow/ledger.db")
MAX_WORKERS = int(os.environ["CIFLOW_MAX_WORKERS"]) if os.environ.get("CIFLOW_MAX_WORKERS") else None
STEP_TIMEOUT = float(os.environ["CIFLOW_STEP_TIMEOUT"]) if os.environ.get("CIFLOW_STEP_TIMEOUT") else None
LOG_DIR = os.environ.get("CIFLOW_LOG_DIR", ".ciflow/logs")
