import logging
from typing import Optional

from rich.logging import RichHandler

from librarycard.config import settings


def configure_logging(level: Optional[str] = None) -> None:
    """Konsol çıktısı için rich işleyicisini kök logger'a bağlar."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx her isteği INFO seviyesinde loglar
    logging.getLogger("httpx").setLevel(logging.WARNING)
