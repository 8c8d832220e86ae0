"""
Simulator configuration
Values come from the environment (or a local .env file) with sensible defaults
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Centralized configuration management"""

    # Storage
    STORAGE_TYPE = os.getenv("STORAGE_TYPE", "file")
    STATE_DIR = os.getenv("PRINTER_STATE_DIR", os.path.join(os.path.expanduser("~"), ".virtual-printer"))
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./printer_sim.db")
    KV_REST_API_URL = os.getenv("KV_REST_API_URL")
    KV_REST_API_TOKEN = os.getenv("KV_REST_API_TOKEN")
    KV_TIMEOUT = float(os.getenv("KV_TIMEOUT", "5.0"))

    # Logging
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_TO_FILE = _env_bool("LOG_TO_FILE", True)

    # Simulation timing
    WARMUP_SECONDS = 12
    DEFAULT_PPM = 15
    MAX_JOBS_PER_RECONCILE = int(os.getenv("MAX_JOBS_PER_RECONCILE", "25"))

    # Optimistic concurrency
    MAX_RETRIES = 3
    RETRY_DELAY = 0.05

    # Consumables
    INITIAL_PAPER_FRACTION = 0.8
    LOW_INK_THRESHOLD = 15
    LOW_PAPER_THRESHOLD = 10

    # History caps
    MAX_ERRORS = 10
    MAX_LOGS = 100
    MAX_COMPLETED_JOBS = 50

    # Maintenance
    MAINTENANCE_INTERVAL_DAYS = 30
    MAINTENANCE_PAGE_INTERVAL = 500

    DEFAULT_PRINTER_TYPE = os.getenv("DEFAULT_PRINTER_TYPE", "hp-envy-6055e")
