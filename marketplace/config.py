import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _bool_env(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


def _list_env(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    app_env: str = "development"
    database_url: str = "sqlite:///./marketplace.db"

    jwt_access_secret: str = "change-me-access-secret"
    jwt_refresh_secret: str = "change-me-refresh-secret"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7

    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = "no-reply@example.com"
    smtp_use_tls: bool = True
    notify_timeout_seconds: float = 15.0
    notify_max_workers: int = 4
    notify_max_pending: int = 100

    frontend_url: str = "http://localhost:3000"
    base_url: str = "http://localhost:8000"

    upload_dir: str = "uploads"
    max_upload_bytes: int = 50 * 1024 * 1024
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""

    rabbitmq_url: str = ""
    events_exchange: str = "marketplace.events"

    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_name: str = "Admin"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def cloudinary_enabled(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            app_env=os.getenv("APP_ENV", "development"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./marketplace.db"),
            jwt_access_secret=os.getenv("JWT_ACCESS_SECRET", "change-me-access-secret"),
            jwt_refresh_secret=os.getenv("JWT_REFRESH_SECRET", "change-me-refresh-secret"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15")),
            refresh_token_expire_days=int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7")),
            cors_origins=_list_env("CORS_ORIGINS", "http://localhost:3000"),
            smtp_host=os.getenv("SMTP_HOST", ""),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_username=os.getenv("SMTP_USERNAME", ""),
            smtp_password=os.getenv("SMTP_PASSWORD", ""),
            smtp_from=os.getenv("SMTP_FROM", "no-reply@example.com"),
            smtp_use_tls=_bool_env("SMTP_USE_TLS", True),
            notify_timeout_seconds=float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "15")),
            notify_max_workers=int(os.getenv("NOTIFY_MAX_WORKERS", "4")),
            notify_max_pending=int(os.getenv("NOTIFY_MAX_PENDING", "100")),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            base_url=os.getenv("BASE_URL", "http://localhost:8000"),
            upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
            max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024))),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME", ""),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY", ""),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET", ""),
            rabbitmq_url=os.getenv("RABBITMQ_URL", ""),
            events_exchange=os.getenv("EVENTS_EXCHANGE", "marketplace.events"),
            admin_email=os.getenv("ADMIN_EMAIL") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
            admin_name=os.getenv("ADMIN_NAME", "Admin"),
        )
