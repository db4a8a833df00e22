from conftest import add_member, auth_headers, make_user


def _add_book(conn, shelf_id, added_by, title="Book"):
    cursor = conn.execute(
        "INSERT INTO books (title, shelf_id, added_by, status) VALUES (?, ?, ?, 'available')",
        (title, shelf_id, added_by),
    )
    conn.commit()
    return cursor.lastrowid


def test_create_location_adds_default_shelf(client, admin_user):
    response = client.post(
        "/api/locations", headers=admin_user["headers"], json={"name": " Cabin ", "description": "Lake"}
    )
    assert response.status_code == 200
    location = response.json()
    assert location["name"] == "Cabin"
    assert location["owner_id"] == admin_user["id"]

    shelves = client.get(f"/api/locations/{location['id']}/shelves", headers=admin_user["headers"]).json()
    assert [shelf["name"] for shelf in shelves] == ["my first shelf"]


def test_only_admins_create_locations(client, member_user):
    response = client.post("/api/locations", headers=member_user["headers"], json={"name": "Mine"})
    assert response.status_code == 403
    assert response.json()["error"] == "Admin privileges required to create locations"


def test_list_locations_owned_and_joined(client, conn, admin_user, member_user, outsider_user, location):
    add_member(conn, location["id"], member_user["id"], admin_user["id"])

    assert [loc["id"] for loc in client.get("/api/locations", headers=admin_user["headers"]).json()] == [location["id"]]
    assert [loc["id"] for loc in client.get("/api/locations", headers=member_user["headers"]).json()] == [location["id"]]
    assert client.get("/api/locations", headers=outsider_user["headers"]).json() == []


def test_update_location_by_path_or_query(client, admin_user, location):
    response = client.put(f"/api/locations/{location['id']}", headers=admin_user["headers"], json={"name": "Study"})
    assert response.status_code == 200
    assert response.json()["name"] == "Study"

    response = client.put(
        "/api/locations", params={"id": location["id"]}, headers=admin_user["headers"], json={"name": "Den"}
    )
    assert response.json()["name"] == "Den"

    missing = client.put("/api/locations", headers=admin_user["headers"], json={"name": "Den"})
    assert missing.status_code == 400


def test_update_location_requires_owner(client, conn, location):
    other_admin = make_user(conn, "other-admin@example.com", role="admin")
    response = client.put(
        f"/api/locations/{location['id']}", headers=auth_headers(other_admin), json={"name": "Taken"}
    )
    assert response.status_code == 403
    assert response.json()["error"] == "Access denied"


def test_delete_location_cascades(client, conn, admin_user, member_user, location):
    add_member(conn, location["id"], member_user["id"])
    book_id = _add_book(conn, location["shelf_id"], admin_user["id"])
    conn.execute("INSERT INTO book_ratings (book_id, user_id, rating) VALUES (?, ?, 4)", (book_id, member_user["id"]))
    conn.commit()

    response = client.delete(f"/api/locations/{location['id']}", headers=admin_user["headers"])
    assert response.status_code == 200
    for table in ("locations", "shelves", "books", "location_members", "book_ratings"):
        assert conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0


def test_leave_location_removes_own_books(client, conn, admin_user, member_user, location):
    second = client.post("/api/locations", headers=admin_user["headers"], json={"name": "Office"}).json()
    add_member(conn, location["id"], member_user["id"])
    add_member(conn, second["id"], member_user["id"])
    mine = _add_book(conn, location["shelf_id"], member_user["id"], "Mine")
    theirs = _add_book(conn, location["shelf_id"], admin_user["id"], "Theirs")

    response = client.post(f"/api/locations/{location['id']}/leave", headers=member_user["headers"])
    assert response.status_code == 200
    remaining = {row[0] for row in conn.execute("SELECT id FROM books")}
    assert remaining == {theirs}
    assert mine not in remaining

    last = client.post(f"/api/locations/{second['id']}/leave", headers=member_user["headers"])
    assert last.status_code == 400


def test_leave_location_not_member(client, outsider_user, location):
    response = client.post(f"/api/locations/{location['id']}/leave", headers=outsider_user["headers"])
    assert response.status_code == 403


def test_shelves_require_access(client, outsider_user, location):
    response = client.get(f"/api/locations/{location['id']}/shelves", headers=outsider_user["headers"])
    assert response.status_code == 403


def test_create_and_rename_shelf(client, admin_user, member_user, conn, location):
    add_member(conn, location["id"], member_user["id"])
    denied = client.post(
        f"/api/locations/{location['id']}/shelves", headers=member_user["headers"], json={"name": "Top"}
    )
    assert denied.status_code == 403

    shelf = client.post(
        f"/api/locations/{location['id']}/shelves", headers=admin_user["headers"], json={"name": "Top"}
    ).json()
    assert shelf["location_id"] == location["id"]

    renamed = client.put(f"/api/shelves/{shelf['id']}", headers=admin_user["headers"], json={"name": "Upper"})
    assert renamed.json()["name"] == "Upper"


def test_delete_shelf_needs_target_when_books_present(client, conn, admin_user, location):
    other = client.post(
        f"/api/locations/{location['id']}/shelves", headers=admin_user["headers"], json={"name": "Other"}
    ).json()
    book_id = _add_book(conn, location["shelf_id"], admin_user["id"])

    response = client.delete(f"/api/shelves/{location['shelf_id']}", headers=admin_user["headers"])
    assert response.status_code == 400
    body = response.json()
    assert body["bookCount"] == 1
    assert body["isLastShelf"] is False
    assert body["availableShelves"] == [{"id": other["id"], "name": "Other"}]

    response = client.request(
        "DELETE",
        f"/api/shelves/{location['shelf_id']}",
        headers=admin_user["headers"],
        json={"targetShelfId": other["id"]},
    )
    assert response.status_code == 200
    assert conn.execute("SELECT shelf_id FROM books WHERE id = ?", (book_id,)).fetchone()[0] == other["id"]


def test_delete_shelf_target_must_be_another_shelf_in_location(client, conn, admin_user, location):
    client.post(f"/api/locations/{location['id']}/shelves", headers=admin_user["headers"], json={"name": "Other"})
    cabin = client.post("/api/locations", headers=admin_user["headers"], json={"name": "Cabin"}).json()
    cabin_shelf = client.get(f"/api/locations/{cabin['id']}/shelves", headers=admin_user["headers"]).json()[0]
    book_id = _add_book(conn, location["shelf_id"], admin_user["id"])

    for target in (cabin_shelf["id"], location["shelf_id"]):
        response = client.request(
            "DELETE",
            f"/api/shelves/{location['shelf_id']}",
            headers=admin_user["headers"],
            json={"targetShelfId": target},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Target shelf must be another shelf in the same location"

    assert conn.execute("SELECT shelf_id FROM books WHERE id = ?", (book_id,)).fetchone()[0] == location["shelf_id"]
    assert conn.execute("SELECT COUNT(*) FROM shelves WHERE id = ?", (location["shelf_id"],)).fetchone()[0] == 1


def test_delete_last_shelf(client, conn, admin_user, location):
    book_id = _add_book(conn, location["shelf_id"], admin_user["id"])

    warning = client.delete(f"/api/shelves/{location['shelf_id']}", headers=admin_user["headers"])
    assert warning.status_code == 400
    assert warning.json()["isLastShelf"] is True
    assert "warningMessage" in warning.json()

    moved = client.request(
        "DELETE",
        f"/api/shelves/{location['shelf_id']}",
        headers=admin_user["headers"],
        json={"createNewShelf": "Replacement"},
    )
    assert moved.status_code == 200
    new_shelf = conn.execute("SELECT shelf_id FROM books WHERE id = ?", (book_id,)).fetchone()[0]
    assert conn.execute("SELECT name FROM shelves WHERE id = ?", (new_shelf,)).fetchone()[0] == "Replacement"

    confirmed = client.request(
        "DELETE", f"/api/shelves/{new_shelf}", headers=admin_user["headers"], json={"confirmDeleteBooks": True}
    )
    assert confirmed.status_code == 200
    assert conn.execute("SELECT COUNT(*) FROM books").fetchone()[0] == 0


def test_delete_empty_shelf(client, admin_user, location):
    response = client.delete(f"/api/shelves/{location['shelf_id']}", headers=admin_user["headers"])
    assert response.status_code == 200
    assert client.get(f"/api/locations/{location['id']}/shelves", headers=admin_user["headers"]).json() == []
