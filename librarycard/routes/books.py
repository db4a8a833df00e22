import logging
import sqlite3

from fastapi import APIRouter, Body, Depends, Query

from librarycard import books, removal_requests
from librarycard.dependencies import get_current_user_id, get_db
from librarycard.exceptions import InvalidRequest, NotFound
from librarycard.schemas import (
    BookCreateModel,
    BookUpdateModel,
    CheckoutModel,
    RatingModel,
    RemovalRequestModel,
    ReviewCommentModel,
)
from librarycard.services.book_lookup import BookLookupService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["books"])


def get_lookup_service() -> BookLookupService:
    return BookLookupService()


@router.get("/books")
def list_books(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return books.list_books(conn, user_id)


@router.get("/books/lookup")
async def lookup_book(
    isbn: str | None = Query(default=None),
    _: str = Depends(get_current_user_id),
    lookup: BookLookupService = Depends(get_lookup_service),
):
    """Google Books / Open Library üzerinden ISBN ile meta veri."""
    if not isbn:
        raise InvalidRequest("ISBN is required")
    metadata = await lookup.lookup_isbn(isbn)
    if metadata is None:
        raise NotFound("Book not found")
    return metadata.to_dict()


@router.post("/books")
async def create_book(
    payload: BookCreateModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
    lookup: BookLookupService = Depends(get_lookup_service),
):
    data = payload.model_dump()
    if not data.get("title"):
        if not data.get("isbn"):
            raise InvalidRequest("Provide either an ISBN or a title")
        metadata = await lookup.lookup_isbn(data["isbn"])
        if metadata is None:
            raise NotFound("Book not found")
        # Açıkça gönderilen alanlar getirilen verinin önüne geçer
        fetched = metadata.to_dict()
        fetched.pop("source", None)
        for key, value in fetched.items():
            if data.get(key) in (None, "", []):
                data[key] = value
    return books.create_book(conn, user_id, data)


@router.get("/books/checkout-history")
@router.get("/checkout-history")
def checkout_history(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return books.checkout_history(conn, user_id)


@router.put("/books/{book_id}")
def update_book(
    book_id: int,
    payload: BookUpdateModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return books.update_book(conn, user_id, book_id, shelf_id=payload.shelf_id, tags=payload.tags)


@router.delete("/books/{book_id}")
def delete_book(book_id: int, user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return books.delete_book(conn, user_id, book_id)


@router.post("/books/{book_id}/checkout")
def checkout_book(
    book_id: int,
    payload: CheckoutModel | None = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    options = payload or CheckoutModel()
    return books.checkout_book(conn, user_id, book_id, due_date=options.due_date, notes=options.notes)


@router.post("/books/{book_id}/checkin")
def checkin_book(book_id: int, user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return books.checkin_book(conn, user_id, book_id)


@router.post("/books/{book_id}/rating")
def rate_book(
    book_id: int,
    payload: RatingModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return books.rate_book(conn, user_id, book_id, payload.rating, payload.review_text)


@router.get("/books/{book_id}/rating")
def get_book_rating(book_id: int, user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return books.get_book_rating(conn, user_id, book_id)


# --- Kitap kaldırma talepleri ---
@router.post("/book-removal-requests")
def create_removal_request(
    payload: RemovalRequestModel,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return removal_requests.create_request(conn, user_id, payload.book_id, payload.reason, payload.reason_details)


@router.get("/book-removal-requests")
def list_removal_requests(user_id: str = Depends(get_current_user_id), conn: sqlite3.Connection = Depends(get_db)):
    return removal_requests.list_requests(conn, user_id)


@router.post("/book-removal-requests/{request_id}/approve")
def approve_removal_request(
    request_id: int,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return removal_requests.approve_request(conn, user_id, request_id)


@router.post("/book-removal-requests/{request_id}/deny")
def deny_removal_request(
    request_id: int,
    payload: ReviewCommentModel | None = Body(default=None),
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    comment = payload.review_comment if payload else None
    return removal_requests.deny_request(conn, user_id, request_id, comment)


@router.delete("/book-removal-requests/{request_id}")
def cancel_removal_request(
    request_id: int,
    user_id: str = Depends(get_current_user_id),
    conn: sqlite3.Connection = Depends(get_db),
):
    return removal_requests.cancel_request(conn, user_id, request_id)
