"""Book removal requests: members ask, admins approve (book deleted) or deny."""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from librarycard.books import decode_list, purge_books
from librarycard.database import timestamp
from librarycard.exceptions import InvalidRequest, NotFound, PermissionDenied
from librarycard.permissions import has_book_access, is_admin, require_admin

logger = logging.getLogger(__name__)

VALID_REASONS = ("lost", "damaged", "missing", "other")


def create_request(
    conn: sqlite3.Connection,
    user_id: str,
    book_id: Optional[int],
    reason: Optional[str],
    reason_details: Optional[str] = None,
) -> Dict[str, Any]:
    if not book_id or not reason:
        raise InvalidRequest("book_id and reason are required")
    if reason not in VALID_REASONS:
        raise InvalidRequest(f"Invalid reason. Must be one of: {', '.join(VALID_REASONS)}")
    if not has_book_access(conn, user_id, book_id):
        raise PermissionDenied("Book not found or access denied")

    existing = conn.execute(
        "SELECT id FROM book_removal_requests WHERE book_id = ? AND status = 'pending'", (book_id,)
    ).fetchone()
    if existing:
        raise InvalidRequest("A removal request for this book is already pending")

    cursor = conn.execute(
        """
        INSERT INTO book_removal_requests (book_id, requester_id, reason, reason_details, status, created_at)
        VALUES (?, ?, ?, ?, 'pending', ?)
        """,
        (book_id, user_id, reason, reason_details, timestamp()),
    )
    conn.commit()
    logger.info("User %s requested removal of book %s (%s)", user_id, book_id, reason)
    return {"message": "Book removal request submitted successfully", "request_id": cursor.lastrowid}


def list_requests(conn: sqlite3.Connection, user_id: str) -> List[Dict[str, Any]]:
    query = """
        SELECT rr.*,
               b.title AS book_title,
               b.authors AS book_authors,
               b.isbn AS book_isbn,
               l.name AS location_name,
               requester.first_name AS requester_name,
               requester.email AS requester_email,
               reviewer.first_name AS reviewer_name
        FROM book_removal_requests rr
        LEFT JOIN books b ON rr.book_id = b.id
        LEFT JOIN shelves s ON b.shelf_id = s.id
        LEFT JOIN locations l ON s.location_id = l.id
        LEFT JOIN users requester ON rr.requester_id = requester.id
        LEFT JOIN users reviewer ON rr.reviewed_by = reviewer.id
    """
    if is_admin(conn, user_id):
        rows = conn.execute(query + " ORDER BY rr.created_at DESC, rr.id DESC").fetchall()
    else:
        rows = conn.execute(
            query + " WHERE rr.requester_id = ? ORDER BY rr.created_at DESC, rr.id DESC", (user_id,)
        ).fetchall()

    requests = []
    for row in rows:
        entry = dict(row)
        entry["book_authors"] = decode_list(entry.get("book_authors"))
        requests.append(entry)
    return requests


def _pending_request(conn: sqlite3.Connection, request_id: int) -> sqlite3.Row:
    row = conn.execute(
        """
        SELECT rr.*, b.title AS book_title
        FROM book_removal_requests rr
        LEFT JOIN books b ON rr.book_id = b.id
        WHERE rr.id = ? AND rr.status = 'pending'
        """,
        (request_id,),
    ).fetchone()
    if not row:
        raise NotFound("Removal request not found or already processed")
    return row


def approve_request(conn: sqlite3.Connection, admin_id: str, request_id: int) -> Dict[str, Any]:
    require_admin(conn, admin_id, "Admin privileges required to approve removal requests")
    request = _pending_request(conn, request_id)

    if request["book_id"] is not None:
        purge_books(conn, [request["book_id"]])
    conn.execute(
        "UPDATE book_removal_requests SET status = 'approved', reviewed_by = ?, reviewed_at = ? WHERE id = ?",
        (admin_id, timestamp(), request_id),
    )
    conn.commit()
    logger.info("Admin %s approved removal request %s (book %s)", admin_id, request_id, request["book_id"])
    return {
        "message": "Book removal request approved and book deleted successfully",
        "book_title": request["book_title"],
        "request_id": request_id,
    }


def deny_request(
    conn: sqlite3.Connection, admin_id: str, request_id: int, review_comment: Optional[str] = None
) -> Dict[str, Any]:
    require_admin(conn, admin_id, "Admin privileges required to deny removal requests")
    _pending_request(conn, request_id)

    conn.execute(
        """
        UPDATE book_removal_requests
        SET status = 'denied', reviewed_by = ?, reviewed_at = ?, review_comment = ?
        WHERE id = ?
        """,
        (admin_id, timestamp(), review_comment, request_id),
    )
    conn.commit()
    logger.info("Admin %s denied removal request %s", admin_id, request_id)
    return {"message": "Book removal request denied", "request_id": request_id}


def cancel_request(conn: sqlite3.Connection, user_id: str, request_id: int) -> Dict[str, Any]:
    cursor = conn.execute(
        "DELETE FROM book_removal_requests WHERE id = ? AND requester_id = ? AND status = 'pending'",
        (request_id, user_id),
    )
    if cursor.rowcount == 0:
        raise NotFound(
            "Removal request not found, already processed, or you do not have permission to cancel it"
        )
    conn.commit()
    return {"message": "Book removal request cancelled successfully", "request_id": request_id}
