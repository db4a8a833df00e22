import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from librarycard.config import settings
from librarycard.exceptions import InvalidRequest, UpstreamServiceError
from librarycard.services.http_client import OptimizedHTTPClient, get_http_client
from librarycard.validators import ISBNValidator

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
OPEN_LIBRARY_URL = "https://openlibrary.org"
OPEN_LIBRARY_COVERS_URL = "https://covers.openlibrary.org/b/id"


@dataclass
class BookMetadata:
    """Book details as returned by a metadata provider"""
    isbn: str
    title: str
    authors: List[str] = field(default_factory=list)
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    published_date: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    page_count: Optional[int] = None
    publisher_info: Optional[str] = None
    google_average_rating: Optional[float] = None
    google_ratings_count: Optional[int] = None
    open_library_key: Optional[str] = None
    source: str = "google_books"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isbn": self.isbn,
            "title": self.title,
            "authors": self.authors,
            "description": self.description,
            "thumbnail": self.thumbnail,
            "published_date": self.published_date,
            "categories": self.categories,
            "page_count": self.page_count,
            "publisher_info": self.publisher_info,
            "google_average_rating": self.google_average_rating,
            "google_ratings_count": self.google_ratings_count,
            "open_library_key": self.open_library_key,
            "source": self.source,
        }


class BookLookupService:
    """Google Books first, Open Library as the fallback."""

    def __init__(self, client: Optional[OptimizedHTTPClient] = None, api_key: Optional[str] = None):
        self._client = client
        self.api_key = api_key or settings.google_books_api_key

    async def _http(self) -> OptimizedHTTPClient:
        if self._client is None:
            self._client = await get_http_client()
        return self._client

    async def lookup_isbn(self, raw_isbn: str) -> Optional[BookMetadata]:
        """Return metadata for an ISBN, or None if no provider knows it.

        Raises InvalidRequest for a malformed ISBN and UpstreamServiceError
        when every provider was unreachable.
        """
        isbn = ISBNValidator.normalize_isbn(raw_isbn)
        if not isbn:
            raise InvalidRequest("ISBN is required")
        if not ISBNValidator.is_valid_isbn(isbn):
            raise InvalidRequest("Invalid ISBN format")

        google_reachable = True
        try:
            book = await self._google_books_by_isbn(isbn)
            if book:
                return book
        except UpstreamServiceError as e:
            logger.warning("Google Books lookup failed for %s: %s", isbn, e)
            google_reachable = False

        try:
            return await self._open_library_by_isbn(isbn)
        except UpstreamServiceError:
            if not google_reachable:
                raise UpstreamServiceError("Book metadata services are unreachable")
            logger.warning("Open Library lookup failed for %s", isbn)
            return None

    async def _google_books_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        items = await self._google_books_query(f"isbn:{isbn}")
        if not items:
            return None
        return self._parse_google_volume(items[0], isbn)

    async def _google_books_query(self, query: str, max_results: int = 1) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"q": query, "maxResults": max_results}
        if self.api_key:
            params["key"] = self.api_key
        client = await self._http()
        resp = await client.get_with_retry(GOOGLE_BOOKS_URL, params=params, timeout=settings.google_books_timeout)
        if resp is None:
            raise UpstreamServiceError("Google Books unreachable")
        if resp.status_code == 429:
            raise UpstreamServiceError("Google Books rate limit exceeded")
        if resp.status_code != 200:
            logger.warning("Google Books returned HTTP %s for %r", resp.status_code, query)
            return []
        return resp.json().get("items") or []

    @staticmethod
    def _parse_google_volume(item: Dict[str, Any], isbn: str) -> BookMetadata:
        info = item.get("volumeInfo", {})
        images = info.get("imageLinks") or {}
        thumbnail = images.get("thumbnail") or images.get("smallThumbnail")
        if thumbnail and thumbnail.startswith("http://"):
            thumbnail = "https://" + thumbnail[len("http://"):]
        return BookMetadata(
            isbn=isbn,
            title=info.get("title") or "Unknown Title",
            authors=info.get("authors") or ["Unknown Author"],
            description=info.get("description"),
            thumbnail=thumbnail,
            published_date=info.get("publishedDate"),
            categories=info.get("categories") or [],
            page_count=info.get("pageCount"),
            publisher_info=info.get("publisher"),
            google_average_rating=info.get("averageRating"),
            google_ratings_count=info.get("ratingsCount"),
            source="google_books",
        )

    async def _open_library_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        client = await self._http()
        resp = await client.get_with_retry(f"{OPEN_LIBRARY_URL}/isbn/{isbn}.json", timeout=settings.openlibrary_timeout)
        if resp is None:
            raise UpstreamServiceError("Open Library unreachable")
        if resp.status_code != 200:
            return None
        data = resp.json()
        if not data.get("title"):
            return None

        authors = []
        for author in data.get("authors") or []:
            name = author.get("name") or await self._open_library_author_name(author.get("key"))
            if name:
                authors.append(name)

        description = data.get("description")
        if isinstance(description, dict):
            description = description.get("value")

        covers = data.get("covers") or []
        publishers = data.get("publishers") or []
        return BookMetadata(
            isbn=isbn,
            title=data["title"],
            authors=authors or ["Unknown Author"],
            description=description,
            thumbnail=f"{OPEN_LIBRARY_COVERS_URL}/{covers[0]}-M.jpg" if covers else None,
            published_date=data.get("publish_date"),
            categories=(data.get("subjects") or [])[:3],
            page_count=data.get("number_of_pages"),
            publisher_info=", ".join(publishers) or None,
            open_library_key=data.get("key"),
            source="open_library",
        )

    async def _open_library_author_name(self, author_key: Optional[str]) -> Optional[str]:
        if not author_key:
            return None
        client = await self._http()
        resp = await client.get_with_retry(f"{OPEN_LIBRARY_URL}{author_key}.json", timeout=settings.openlibrary_timeout)
        if resp is None or resp.status_code != 200:
            return None
        return resp.json().get("name")

    async def find_published_date(self, title: str, authors: List[str], isbn: Optional[str] = None) -> Optional[str]:
        """Best-effort publication date: by ISBN first, then by title and first author."""
        queries = []
        normalized = ISBNValidator.normalize_isbn(isbn)
        if normalized:
            queries.append(f"isbn:{normalized}")
        if title:
            query = f'intitle:"{title}"'
            if authors:
                query += f' inauthor:"{authors[0]}"'
            queries.append(query)

        for query in queries:
            for item in await self._google_books_query(query, max_results=5):
                published = (item.get("volumeInfo") or {}).get("publishedDate")
                if published:
                    return published
        return None
