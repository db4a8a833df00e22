import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from librarycard import __version__, database
from librarycard.config import settings
from librarycard.exceptions import LibraryCardError, librarycard_exception_handler
from librarycard.routes import admin, auth, books, invitations, locations, misc
from librarycard.services.http_client import cleanup_http_client, get_http_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Başlangıçta kaynakları başlat
    database.initialize_database()
    await get_http_client()
    logger.info("%s API started (environment=%s)", settings.app_name, settings.environment)
    try:
        yield
    finally:
        # Kapanışta kaynakları temizle
        await cleanup_http_client()


app = FastAPI(title=f"{settings.app_name} API", version=__version__, lifespan=lifespan)

# --- Performans Ara Katmanı ---
# 1KB'den büyük yanıtlar için GZip sıkıştırmasını etkinleştir
app.add_middleware(GZipMiddleware, minimum_size=1000)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Güvenlik Başlıkları Ara Katmanı ---
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    # Kullanıcıya özel veriler önbelleğe alınmaz
    if request.url.path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store"
    return response


app.add_exception_handler(LibraryCardError, librarycard_exception_handler)

for module in (auth, locations, books, invitations, admin, misc):
    app.include_router(module.router)


# --- Sağlık Kontrolü ---
@app.get("/health")
@app.get("/api/health")
def health():
    """Docker ve compose sağlık kontrolleri için hafif sağlık uç noktası."""
    db_ok = True
    try:
        conn = database.get_db_connection()
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except sqlite3.Error:
        logger.exception("Health check database probe failed")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "db": db_ok,
        "services": {
            "google_books": bool(settings.google_books_api_key),
            "vision": bool(settings.google_vision_api_key or settings.google_service_account_json),
            "email": bool(settings.resend_api_key or settings.postmark_api_token),
        },
    }
