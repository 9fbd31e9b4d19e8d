import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        currency: str,
        user_id: str,
        user_name: str,
        catch_up_workers: int,
        projection_months: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.currency = currency
        self.user_id = user_id
        self.user_name = user_name
        self.catch_up_workers = catch_up_workers
        self.projection_months = projection_months


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Asia/Kolkata")
    currency = os.getenv("LEDGER_CURRENCY", "INR")
    user_id = os.getenv("LEDGER_USER_ID", "1")
    user_name = os.getenv("LEDGER_USER_NAME", "Me")
    catch_up_workers = max(1, int(os.getenv("LEDGER_CATCH_UP_WORKERS", "8")))
    projection_months = int(os.getenv("LEDGER_PROJECTION_MONTHS", "6"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        currency=currency,
        user_id=user_id,
        user_name=user_name,
        catch_up_workers=catch_up_workers,
        projection_months=projection_months,
    )
