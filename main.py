import asyncio
import os
import subprocess
import sys
from typing import List, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from librarycard import admin, database
from librarycard.books import decode_list
from librarycard.config import settings
from librarycard.exceptions import LibraryCardError
from librarycard.logging_config import configure_logging
from librarycard.services.book_lookup import BookLookupService
from librarycard.services.http_client import cleanup_http_client
from librarycard.users import get_user_by_email
from librarycard.validators import normalize_email

console = Console()

# --- Typer CLI Uygulaması ---
app = typer.Typer(help="LibraryCard yönetim CLI'si")


@app.callback()
def _global_options(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log seviyesi (varsayılan: LOG_LEVEL)"),
):
    """CLI için genel seçenekler."""
    configure_logging(log_level)


def _fail(message: str) -> None:
    console.print(f"[bold red]Hata:[/] {message}")
    raise typer.Exit(code=1)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Dinlenecek adres"),
    port: Optional[int] = typer.Option(None, "--port", help="Dinlenecek port"),
    reload: bool = typer.Option(False, "--reload", help="Kod değişince yeniden başlat"),
    timeout: int = typer.Option(0, "--timeout", help="Otomatik çıkıştan önce çalışacak saniye (0 = zaman aşımı yok)"),
):
    """API sunucusunu uvicorn ile başlat."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    console.print(f"[green]API başlatılıyor: http://{host}:{port}/[/]")
    args = [sys.executable, "-m", "uvicorn", "librarycard.api:app", "--host", host, "--port", str(port)]
    try:
        if timeout and timeout > 0:
            # Zaman aşımı modunda yeniden yükleyici kapalıyken daha sorunsuz kapanır
            proc = subprocess.Popen(args, start_new_session=os.name != "nt")
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                # Süre doldu; önce düzgün, sonra zorla kapat
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait(timeout=3)
        else:
            if reload:
                args.append("--reload")
            subprocess.run(args)
    except FileNotFoundError:
        _fail("`uvicorn` komutu bulunamadı. Lütfen ortamınızda yüklü olduğundan emin olun.")


@app.command("init-db")
def cli_init_db():
    """Tabloları oluştur ve eksik sütunları ekle."""
    database.initialize_database()
    print(f"Database initialized at {database.DATABASE_FILE}")


def _change_role(email: str, role: str) -> None:
    database.initialize_database()
    conn = database.get_db_connection()
    try:
        user = get_user_by_email(conn, normalize_email(email))
        if user is None:
            _fail(f"No user with email {email}")
        admin.set_role(conn, user["id"], role)
    finally:
        conn.close()
    print(f"{email} is now {role}")


@app.command("promote")
def cli_promote(email: str = typer.Argument(..., help="Yönetici yapılacak kullanıcının e-postası")):
    """Kullanıcıya yönetici rolü ver."""
    _change_role(email, admin.ADMIN_ROLE)


@app.command("demote")
def cli_demote(email: str = typer.Argument(..., help="Rolü düşürülecek kullanıcının e-postası")):
    """Kullanıcıyı normal kullanıcı rolüne indir."""
    _change_role(email, admin.USER_ROLE)


@app.command("users")
def cli_users():
    """Kullanıcıları istatistikleriyle listele."""
    database.initialize_database()
    conn = database.get_db_connection()
    try:
        rows = admin.list_users_with_stats(conn)
    finally:
        conn.close()
    if not rows:
        print("No users found")
        return

    table = Table(title="LibraryCard Users", box=box.SIMPLE, header_style="bold cyan")
    table.add_column("Email", style="magenta", no_wrap=True)
    table.add_column("Name")
    table.add_column("Role")
    table.add_column("Verified")
    table.add_column("Books", justify="right")
    table.add_column("Locations", justify="right")
    for row in rows:
        name = " ".join(part for part in (row["first_name"], row["last_name"]) if part)
        table.add_row(
            row["email"],
            name,
            row["user_role"],
            "yes" if row["email_verified"] else "no",
            str(row["books_added"]),
            str(row["locations_joined"]),
        )
    console.print(table)
    console.print(f"[dim]{len(rows)} users[/]")


@app.command("cleanup-user")
def cli_cleanup_user(
    email: str = typer.Argument(..., help="Silinecek kullanıcının e-postası"),
    owner: List[str] = typer.Option(
        [], "--owner", help="Sahiplik devri LOCATION_ID=USER_ID (tekrarlanabilir)"
    ),
):
    """Kullanıcıyı sil; sahip olduğu konumları başka yöneticilere devret."""
    transfers = {}
    for item in owner:
        location_id, sep, user_id = item.partition("=")
        if not sep or not location_id.strip() or not user_id.strip():
            _fail(f"Invalid --owner value {item!r}, expected LOCATION_ID=USER_ID")
        transfers[location_id.strip()] = user_id.strip()

    database.initialize_database()
    conn = database.get_db_connection()
    try:
        result = admin.remove_user(conn, email, transfers or None)
    except LibraryCardError as exc:
        conn.rollback()
        owned = exc.details.get("owned_locations")
        if owned:
            for location in owned:
                console.print(f"  owns location {location['id']}: {location['name']}")
        _fail(exc.message)
    finally:
        conn.close()
    print(result["message"])


async def _backfill_published_dates(lookup: BookLookupService) -> int:
    conn = database.get_db_connection()
    updated = 0
    try:
        rows = conn.execute(
            "SELECT id, title, authors, isbn FROM books WHERE published_date IS NULL OR published_date = ''"
        ).fetchall()
        print(f"Found {len(rows)} books without a publication date")
        for row in rows:
            published = await lookup.find_published_date(row["title"], decode_list(row["authors"]), row["isbn"])
            if not published:
                console.print(f"[yellow]  no date found for {row['title']}[/]")
                continue
            conn.execute("UPDATE books SET published_date = ? WHERE id = ?", (published, row["id"]))
            conn.commit()
            updated += 1
            console.print(f"  {row['title']} -> {published}")
    finally:
        conn.close()
        await cleanup_http_client()
    return updated


@app.command("backfill-dates")
def cli_backfill_dates():
    """Yayın tarihi eksik kitapları Google Books üzerinden tamamla."""
    database.initialize_database()
    try:
        updated = asyncio.run(_backfill_published_dates(BookLookupService()))
    except LibraryCardError as exc:
        _fail(exc.message)
    print(f"Updated {updated} books")


if __name__ == "__main__":
    app()
