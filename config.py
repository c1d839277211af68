import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

MIN_PIN_DISTANCE_METERS = 50
MAX_SEARCH_RADIUS_METERS = 50_000
DEFAULT_SEARCH_RADIUS_METERS = 1000


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    mongo_url: str = "mongodb://localhost:27017"
    database_name: str = "pinboard"
    mongo_transactions: bool = True
    firebase_project_id: Optional[str] = None
    firebase_client_email: Optional[str] = None
    firebase_private_key: Optional[str] = None
    google_api_key: Optional[str] = None
    mymemory_email: Optional[str] = None
    http_timeout: float = 5.0
    reference_timezone: str = "UTC"
    app_env: str = "production"
    log_level: str = "INFO"
    port: int = 8000

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        private_key = os.getenv("FIREBASE_PRIVATE_KEY")
        if private_key:
            private_key = private_key.replace("\\n", "\n")
        return cls(
            mongo_url=os.getenv("MONGO_URL", os.getenv("DATABASE_URL", cls.mongo_url)).strip(),
            database_name=os.getenv("DATABASE_NAME", cls.database_name).strip(),
            mongo_transactions=_flag("MONGO_TRANSACTIONS", "true"),
            firebase_project_id=os.getenv("FIREBASE_PROJECT_ID") or None,
            firebase_client_email=os.getenv("FIREBASE_CLIENT_EMAIL") or None,
            firebase_private_key=private_key or None,
            google_api_key=os.getenv("GOOGLE_PLACES_API_KEY") or None,
            mymemory_email=os.getenv("MYMEMORY_EMAIL") or None,
            http_timeout=float(os.getenv("HTTP_TIMEOUT_SECONDS", "5").strip()),
            reference_timezone=os.getenv("REFERENCE_TIMEZONE", "UTC").strip(),
            app_env=os.getenv("APP_ENV", "production").strip().lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            port=int(os.getenv("PORT", "8000")),
        )
