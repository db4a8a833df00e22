from conftest import add_member, auth_headers, make_user


def _create(client, user, shelf_id, **fields):
    payload = {"title": "Dune", "authors": ["Frank Herbert"], "isbn": "9780441013593", "shelfId": shelf_id}
    payload.update(fields)
    response = client.post("/api/books", headers=user["headers"], json=payload)
    assert response.status_code == 200, response.text
    return response.json()


def test_create_and_list_books(client, admin_user, location):
    book = _create(client, admin_user, location["shelf_id"], tags=["favourite"])
    assert book["title"] == "Dune"
    assert book["authors"] == ["Frank Herbert"]
    assert book["tags"] == ["favourite"]
    assert book["status"] == "available"
    assert book["location_name"] == "Home"
    assert book["rating_count"] == 0

    books = client.get("/api/books", headers=admin_user["headers"]).json()
    assert [b["id"] for b in books] == [book["id"]]


def test_books_visible_to_members_only(client, conn, admin_user, member_user, outsider_user, location):
    _create(client, admin_user, location["shelf_id"])
    add_member(conn, location["id"], member_user["id"])

    assert len(client.get("/api/books", headers=member_user["headers"]).json()) == 1
    assert client.get("/api/books", headers=outsider_user["headers"]).json() == []


def test_create_book_on_foreign_shelf(client, outsider_user, location):
    response = client.post(
        "/api/books", headers=outsider_user["headers"], json={"title": "Sneaky", "shelfId": location["shelf_id"]}
    )
    assert response.status_code == 403


def test_create_book_from_isbn_only(client, admin_user, location, fake_lookup):
    response = client.post(
        "/api/books", headers=admin_user["headers"], json={"isbn": "9780132350884", "shelfId": location["shelf_id"]}
    )
    assert response.status_code == 200
    book = response.json()
    assert book["title"] == "Clean Code"
    assert book["authors"] == ["Robert C. Martin"]
    assert book["page_count"] == 464
    assert fake_lookup.calls == ["9780132350884"]


def test_create_book_unknown_isbn(client, admin_user, fake_lookup):
    response = client.post("/api/books", headers=admin_user["headers"], json={"isbn": "9780000000002"})
    assert response.status_code == 404


def test_create_book_without_title_or_isbn(client, admin_user, fake_lookup):
    response = client.post("/api/books", headers=admin_user["headers"], json={})
    assert response.status_code == 400


def test_lookup_endpoint(client, admin_user, fake_lookup):
    found = client.get("/api/books/lookup", params={"isbn": "9780132350884"}, headers=admin_user["headers"])
    assert found.status_code == 200
    assert found.json()["title"] == "Clean Code"

    missing = client.get("/api/books/lookup", headers=admin_user["headers"])
    assert missing.status_code == 400
    assert missing.json()["error"] == "ISBN is required"


def test_update_book_moves_and_retags(client, admin_user, location):
    book = _create(client, admin_user, location["shelf_id"])
    other = client.post(
        f"/api/locations/{location['id']}/shelves", headers=admin_user["headers"], json={"name": "Other"}
    ).json()

    response = client.put(
        f"/api/books/{book['id']}", headers=admin_user["headers"], json={"shelfId": other["id"], "tags": ["sci-fi"]}
    )
    assert response.status_code == 200
    assert response.json()["shelf_id"] == other["id"]
    assert response.json()["tags"] == ["sci-fi"]


def test_delete_book_access(client, admin_user, outsider_user, location):
    book = _create(client, admin_user, location["shelf_id"])
    assert client.delete(f"/api/books/{book['id']}", headers=outsider_user["headers"]).status_code == 403
    assert client.delete(f"/api/books/{book['id']}", headers=admin_user["headers"]).json() == {"success": True}
    assert client.get("/api/books", headers=admin_user["headers"]).json() == []


def test_unknown_book_is_access_denied(client, admin_user):
    response = client.delete("/api/books/999", headers=admin_user["headers"])
    assert response.status_code == 403


# --- Ödünç alma ---
def test_checkout_and_checkin(client, conn, admin_user, member_user, location):
    add_member(conn, location["id"], member_user["id"])
    book = _create(client, admin_user, location["shelf_id"])

    checkout = client.post(f"/api/books/{book['id']}/checkout", headers=member_user["headers"])
    assert checkout.status_code == 200
    assert checkout.json()["success"] is True

    listed = client.get("/api/books", headers=member_user["headers"]).json()[0]
    assert listed["status"] == "checked_out"
    assert listed["checked_out_by"] == member_user["id"]
    assert listed["checked_out_by_name"] == "Mel"

    again = client.post(f"/api/books/{book['id']}/checkout", headers=admin_user["headers"])
    assert again.status_code == 400
    assert again.json()["error"] == "Book is already checked out"

    checkin = client.post(f"/api/books/{book['id']}/checkin", headers=member_user["headers"])
    assert checkin.status_code == 200
    listed = client.get("/api/books", headers=member_user["headers"]).json()[0]
    assert listed["status"] == "available"
    assert listed["checked_out_by"] is None
    assert listed["due_date"] is None

    not_out = client.post(f"/api/books/{book['id']}/checkin", headers=member_user["headers"])
    assert not_out.status_code == 400


def test_checkout_with_due_date_and_notes(client, admin_user, location):
    book = _create(client, admin_user, location["shelf_id"])
    response = client.post(
        f"/api/books/{book['id']}/checkout",
        headers=admin_user["headers"],
        json={"dueDate": "2030-05-01", "notes": "beach reading"},
    )
    assert response.json()["due_date"] == "2030-05-01 00:00:00"

    bad = client.post(f"/api/books/{book['id']}/checkin", headers=admin_user["headers"])
    assert bad.status_code == 200
    invalid = client.post(
        f"/api/books/{book['id']}/checkout", headers=admin_user["headers"], json={"dueDate": "someday"}
    )
    assert invalid.status_code == 400


def test_only_borrower_or_admin_checks_in(client, conn, admin_user, member_user, location):
    add_member(conn, location["id"], member_user["id"])
    other_id = make_user(conn, "other@example.com")
    add_member(conn, location["id"], other_id)
    book = _create(client, admin_user, location["shelf_id"])

    client.post(f"/api/books/{book['id']}/checkout", headers=member_user["headers"])
    denied = client.post(f"/api/books/{book['id']}/checkin", headers=auth_headers(other_id))
    assert denied.status_code == 403
    assert denied.json()["error"] == "You can only check in books that you have checked out"

    assert client.post(f"/api/books/{book['id']}/checkin", headers=admin_user["headers"]).status_code == 200


def test_checkout_history(client, conn, admin_user, member_user, location):
    add_member(conn, location["id"], member_user["id"])
    book = _create(client, admin_user, location["shelf_id"])
    client.post(f"/api/books/{book['id']}/checkout", headers=member_user["headers"])
    client.post(f"/api/books/{book['id']}/checkin", headers=member_user["headers"])
    client.post(f"/api/books/{book['id']}/checkout", headers=admin_user["headers"])

    mine = client.get("/api/books/checkout-history", headers=member_user["headers"]).json()
    assert sorted(entry["action"] for entry in mine) == ["checkout", "return"]
    assert all(entry["user_id"] == member_user["id"] for entry in mine)
    assert mine[0]["book_title"] == "Dune"
    assert mine[0]["book_authors"] == ["Frank Herbert"]

    everything = client.get("/api/checkout-history", headers=admin_user["headers"]).json()
    assert len(everything) == 3


# --- Puanlar ---
def test_rate_book(client, conn, admin_user, member_user, location):
    add_member(conn, location["id"], member_user["id"])
    book = _create(client, admin_user, location["shelf_id"])

    first = client.post(f"/api/books/{book['id']}/rating", headers=admin_user["headers"], json={"rating": 5})
    assert first.status_code == 200
    second = client.post(
        f"/api/books/{book['id']}/rating",
        headers=member_user["headers"],
        json={"rating": 2, "reviewText": "Too long"},
    ).json()
    assert second["average_rating"] == 3.5
    assert second["rating_count"] == 2

    # Tekrar puanlamak kaydı günceller
    updated = client.post(f"/api/books/{book['id']}/rating", headers=member_user["headers"], json={"rating": 3})
    assert updated.json()["rating_count"] == 2
    assert updated.json()["average_rating"] == 4.0

    details = client.get(f"/api/books/{book['id']}/rating", headers=member_user["headers"]).json()
    assert details["user_rating"] == 3
    assert details["location_id"] == location["id"]

    listed = client.get("/api/books", headers=member_user["headers"]).json()[0]
    assert listed["user_rating"] == 3
    assert listed["rating_count"] == 2


def test_rating_zero_deletes(client, admin_user, location):
    book = _create(client, admin_user, location["shelf_id"])
    client.post(f"/api/books/{book['id']}/rating", headers=admin_user["headers"], json={"rating": 4})
    response = client.post(f"/api/books/{book['id']}/rating", headers=admin_user["headers"], json={"rating": 0})
    assert response.json()["message"] == "Rating deleted successfully"
    assert response.json()["rating_count"] == 0
    assert response.json()["average_rating"] is None


def test_rating_validation(client, admin_user, location):
    book = _create(client, admin_user, location["shelf_id"])
    for value in (6, -1, 2.5, "4", None, True):
        response = client.post(f"/api/books/{book['id']}/rating", headers=admin_user["headers"], json={"rating": value})
        assert response.status_code == 400
        assert response.json()["error"] == "Rating must be an integer between 0 (to delete) and 5"

    whole = client.post(f"/api/books/{book['id']}/rating", headers=admin_user["headers"], json={"rating": 4.0})
    assert whole.status_code == 200
    assert whole.json()["average_rating"] == 4.0


def test_ratings_from_former_members_are_not_counted(client, conn, admin_user, member_user, location):
    add_member(conn, location["id"], member_user["id"])
    book = _create(client, admin_user, location["shelf_id"])
    client.post(f"/api/books/{book['id']}/rating", headers=member_user["headers"], json={"rating": 1})
    client.post(f"/api/books/{book['id']}/rating", headers=admin_user["headers"], json={"rating": 5})

    conn.execute("DELETE FROM location_members WHERE user_id = ?", (member_user["id"],))
    conn.commit()

    details = client.get(f"/api/books/{book['id']}/rating", headers=admin_user["headers"]).json()
    assert details["rating_count"] == 1
    assert details["average_rating"] == 5.0


def test_rating_requires_access(client, admin_user, outsider_user, location):
    book = _create(client, admin_user, location["shelf_id"])
    response = client.post(f"/api/books/{book['id']}/rating", headers=outsider_user["headers"], json={"rating": 3})
    assert response.status_code == 403


# --- Kaldırma talepleri ---
def test_removal_request_approved(client, conn, admin_user, member_user, location):
    add_member(conn, location["id"], member_user["id"])
    book = _create(client, admin_user, location["shelf_id"])
    client.post(f"/api/books/{book['id']}/rating", headers=member_user["headers"], json={"rating": 4})

    created = client.post(
        "/api/book-removal-requests",
        headers=member_user["headers"],
        json={"book_id": book["id"], "reason": "lost", "reason_details": "left on a train"},
    )
    assert created.status_code == 200
    request_id = created.json()["request_id"]

    duplicate = client.post(
        "/api/book-removal-requests", headers=member_user["headers"], json={"book_id": book["id"], "reason": "lost"}
    )
    assert duplicate.status_code == 400

    mine = client.get("/api/book-removal-requests", headers=member_user["headers"]).json()
    assert [r["id"] for r in mine] == [request_id]
    assert mine[0]["book_title"] == "Dune"

    denied = client.post(f"/api/book-removal-requests/{request_id}/approve", headers=member_user["headers"])
    assert denied.status_code == 403

    approved = client.post(f"/api/book-removal-requests/{request_id}/approve", headers=admin_user["headers"])
    assert approved.status_code == 200
    assert approved.json()["book_title"] == "Dune"
    assert conn.execute("SELECT COUNT(*) FROM books").fetchone()[0] == 0
    assert conn.execute("SELECT COUNT(*) FROM book_ratings").fetchone()[0] == 0

    processed = client.post(f"/api/book-removal-requests/{request_id}/deny", headers=admin_user["headers"])
    assert processed.status_code == 404


def test_removal_request_denied_and_cancelled(client, conn, admin_user, member_user, location):
    add_member(conn, location["id"], member_user["id"])
    book = _create(client, admin_user, location["shelf_id"])

    invalid = client.post(
        "/api/book-removal-requests", headers=member_user["headers"], json={"book_id": book["id"], "reason": "bored"}
    )
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "Invalid reason. Must be one of: lost, damaged, missing, other"

    first = client.post(
        "/api/book-removal-requests", headers=member_user["headers"], json={"book_id": book["id"], "reason": "damaged"}
    ).json()
    denied = client.post(
        f"/api/book-removal-requests/{first['request_id']}/deny",
        headers=admin_user["headers"],
        json={"comment": "Still readable"},
    )
    assert denied.status_code == 200
    row = conn.execute("SELECT status, review_comment FROM book_removal_requests WHERE id = ?", (first["request_id"],)).fetchone()
    assert tuple(row) == ("denied", "Still readable")

    second = client.post(
        "/api/book-removal-requests", headers=member_user["headers"], json={"book_id": book["id"], "reason": "missing"}
    ).json()
    assert client.delete(f"/api/book-removal-requests/{second['request_id']}", headers=admin_user["headers"]).status_code == 404
    cancelled = client.delete(f"/api/book-removal-requests/{second['request_id']}", headers=member_user["headers"])
    assert cancelled.status_code == 200
    assert conn.execute("SELECT COUNT(*) FROM books").fetchone()[0] == 1
