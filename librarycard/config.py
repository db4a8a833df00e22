import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API Ayarları
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    # Servisler arası çağrılar (OAuth kullanıcı senkronizasyonu) için anahtar
    api_key: str = os.getenv("API_KEY", "super-secret-key")
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    # Veritabanı Ayarları
    database_file: str = os.getenv("LIBRARY_DB_FILE", "librarycard.db")

    # Güvenlik Ayarları
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", secret_key)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "10080"))  # 7 gün

    # Uygulama Ayarları
    app_name: str = os.getenv("APP_NAME", "LibraryCard")
    app_url: str = os.getenv("APP_URL", "http://localhost:3000")
    debug: bool = _flag("DEBUG")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Ödünç / davet / token süreleri
    checkout_days: int = int(os.getenv("CHECKOUT_DAYS", "14"))
    invitation_days: int = int(os.getenv("INVITATION_DAYS", "7"))
    verification_hours: int = int(os.getenv("VERIFICATION_HOURS", "24"))
    password_reset_minutes: int = int(os.getenv("PASSWORD_RESET_MINUTES", "60"))

    # E-posta Ayarları
    resend_api_key: Optional[str] = os.getenv("RESEND_API_KEY")
    postmark_api_token: Optional[str] = os.getenv("POSTMARK_API_TOKEN")
    email_from: str = os.getenv("EMAIL_FROM", "LibraryCard <noreply@librarycard.app>")
    contact_email: str = os.getenv("CONTACT_EMAIL", "librarian@librarycard.app")
    email_timeout: float = float(os.getenv("EMAIL_TIMEOUT", "10"))

    # Harici API Ayarları
    openlibrary_timeout: float = float(os.getenv("OPENLIBRARY_TIMEOUT", "10"))
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "10"))

    # Google Vision (OCR) Ayarları
    google_vision_api_key: Optional[str] = os.getenv("GOOGLE_VISION_API_KEY")
    # Hizmet hesabı JSON içeriği (API anahtarı yoksa kullanılır)
    google_service_account_json: Optional[str] = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON")
    google_vision_timeout: float = float(os.getenv("GOOGLE_VISION_TIMEOUT", "30"))


settings = Settings()
