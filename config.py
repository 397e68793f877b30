import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        caller_secret: str,
        batch_max_documents: int,
        summary_debounce_secs: float,
        occurrence_tolerance_days: int,
        due_soon_days: int,
        generation_horizon_months: int,
        precreate_window: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.caller_secret = caller_secret
        self.batch_max_documents = batch_max_documents
        self.summary_debounce_secs = summary_debounce_secs
        self.occurrence_tolerance_days = occurrence_tolerance_days
        self.due_soon_days = due_soon_days
        self.generation_horizon_months = generation_horizon_months
        self.precreate_window = precreate_window


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("PERIOD_LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "period_ledger.db"
    database_url = os.getenv("PERIOD_LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("PERIOD_LEDGER_TIMEZONE", "Europe/Berlin")
    caller_secret = os.getenv(
        "PERIOD_LEDGER_CALLER_SECRET",
        "5c0d7f1e2b9a48c6a3e1f07d9b2c4e6f8a1d3b5c7e9f0a2b4c6d8e0f1a3b5c7d",
    )
    batch_max_documents = int(os.getenv("PERIOD_LEDGER_BATCH_MAX_DOCUMENTS", "500"))
    summary_debounce_secs = float(os.getenv("PERIOD_LEDGER_SUMMARY_DEBOUNCE_SECS", "5"))
    occurrence_tolerance_days = int(
        os.getenv("PERIOD_LEDGER_OCCURRENCE_TOLERANCE_DAYS", "3")
    )
    due_soon_days = int(os.getenv("PERIOD_LEDGER_DUE_SOON_DAYS", "3"))
    generation_horizon_months = int(
        os.getenv("PERIOD_LEDGER_GENERATION_HORIZON_MONTHS", "15")
    )
    precreate_window = int(os.getenv("PERIOD_LEDGER_PRECREATE_WINDOW", "12"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        caller_secret=caller_secret,
        batch_max_documents=batch_max_documents,
        summary_debounce_secs=summary_debounce_secs,
        occurrence_tolerance_days=occurrence_tolerance_days,
        due_soon_days=due_soon_days,
        generation_horizon_months=generation_horizon_months,
        precreate_window=precreate_window,
    )
