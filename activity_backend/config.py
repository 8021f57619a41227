from typing import List

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Strava API (single fixed credential set)
    STRAVA_CLIENT_ID: str = ""
    STRAVA_CLIENT_SECRET: str = ""
    STRAVA_REFRESH_TOKEN: str = ""
    STRAVA_API_BASE_URL: str = "https://www.strava.com/api/v3"
    STRAVA_TOKEN_URL: str = "https://www.strava.com/oauth/token"
    STRAVA_PAGE_SIZE: int = 200  # Strava max per page
    STRAVA_STREAM_KEYS: str = "time,altitude,velocity_smooth,heartrate,cadence,watts"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Token lifecycle
    TOKEN_EXPIRY_MARGIN_SECONDS: int = 0

    # Enrichment
    ENRICH_CONCURRENCY: int = 10

    # Dataset storage
    DATA_DIR: str = "."
    DATASET_FILENAME: str = "activities.json"
    CSV_FILENAME: str = "activities.csv"

    # HTTP surface
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173"
    RATE_LIMIT: str = "30/minute"
    RATE_LIMIT_ENABLED: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

settings = Settings()
