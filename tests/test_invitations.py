from unittest.mock import AsyncMock

from conftest import add_member, auth_headers, make_user
from librarycard.exceptions import EmailDeliveryError
from librarycard.services import mailer


def _invite(client, admin_user, location, email="friend@example.com"):
    return client.post(
        f"/api/locations/{location['id']}/invite", headers=admin_user["headers"], json={"invited_email": email}
    )


def _token(conn, invitation_id):
    return conn.execute(
        "SELECT invitation_token FROM location_invitations WHERE id = ?", (invitation_id,)
    ).fetchone()[0]


def test_create_invitation_sends_email(client, admin_user, location, monkeypatch):
    send = AsyncMock(return_value="log")
    monkeypatch.setattr(mailer, "send_invitation_email", send)

    response = _invite(client, admin_user, location, "Friend@Example.com")
    assert response.status_code == 200
    body = response.json()
    assert body["invited_email"] == "friend@example.com"
    assert body["message"] == "Invitation sent successfully"
    assert set(body) == {"id", "invited_email", "expires_at", "message"}

    to, location_name, token, inviter = send.await_args.args
    assert (to, location_name, inviter) == ("friend@example.com", "Home", "Ada")
    assert token


def test_invitation_survives_email_failure(client, conn, admin_user, location, monkeypatch):
    monkeypatch.setattr(mailer, "send_invitation_email", AsyncMock(side_effect=EmailDeliveryError("down")))
    response = _invite(client, admin_user, location)
    assert response.status_code == 200
    assert conn.execute("SELECT COUNT(*) FROM location_invitations").fetchone()[0] == 1


def test_invitation_rules(client, conn, admin_user, member_user, location):
    bad_email = _invite(client, admin_user, location, "not-an-email")
    assert bad_email.status_code == 400

    add_member(conn, location["id"], member_user["id"])
    already = _invite(client, admin_user, location, member_user["email"])
    assert already.json()["error"] == "User is already a member of this location"

    assert _invite(client, admin_user, location).status_code == 200
    duplicate = _invite(client, admin_user, location)
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "An active invitation already exists for this email"

    non_admin = client.post(
        f"/api/locations/{location['id']}/invite", headers=member_user["headers"], json={"email": "x@example.com"}
    )
    assert non_admin.status_code == 403


def test_accept_invitation(client, conn, admin_user, location):
    invitation = _invite(client, admin_user, location).json()
    token = _token(conn, invitation["id"])
    friend_id = make_user(conn, "friend@example.com")
    headers = auth_headers(friend_id, "friend@example.com")

    details = client.get("/api/invitations/details", params={"token": token})
    assert details.json()["location_name"] == "Home"

    accepted = client.post("/api/invitations/accept", headers=headers, json={"token": token})
    assert accepted.status_code == 200
    assert accepted.json()["location_id"] == location["id"]
    assert [loc["id"] for loc in client.get("/api/locations", headers=headers).json()] == [location["id"]]

    member = conn.execute(
        "SELECT role, invited_by FROM location_members WHERE user_id = ?", (friend_id,)
    ).fetchone()
    assert tuple(member) == ("member", admin_user["id"])

    reused = client.post("/api/invitations/accept", headers=headers, json={"token": token})
    assert reused.status_code == 400
    assert client.get("/api/invitations/details", params={"token": token}).status_code == 400


def test_accept_invitation_for_another_email(client, conn, admin_user, outsider_user, location):
    invitation = _invite(client, admin_user, location).json()
    response = client.post(
        "/api/invitations/accept", headers=outsider_user["headers"], json={"token": _token(conn, invitation["id"])}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Invitation email does not match your account"


def test_expired_invitation(client, conn, admin_user, location):
    invitation = _invite(client, admin_user, location).json()
    conn.execute("UPDATE location_invitations SET expires_at = '2000-01-01 00:00:00'")
    conn.commit()
    response = client.get("/api/invitations/details", params={"token": _token(conn, invitation["id"])})
    assert response.status_code == 400
    assert response.json()["error"] == "Invitation has expired"

    # Süresi dolmuş davet yenisinin önünde durmaz
    assert _invite(client, admin_user, location).status_code == 200


def test_list_and_revoke_invitations(client, conn, admin_user, member_user, location):
    invitation = _invite(client, admin_user, location).json()

    listed = client.get(f"/api/locations/{location['id']}/invitations", headers=admin_user["headers"]).json()
    assert [i["id"] for i in listed] == [invitation["id"]]
    assert listed[0]["invited_by_name"] == "Ada"
    assert client.get(
        f"/api/locations/{location['id']}/invitations", headers=member_user["headers"]
    ).status_code == 403

    revoked = client.delete(f"/api/invitations/{invitation['id']}/revoke", headers=admin_user["headers"])
    assert revoked.status_code == 200
    assert revoked.json()["revoked_invitation"]["invited_email"] == "friend@example.com"
    assert client.delete(f"/api/invitations/{invitation['id']}/revoke", headers=admin_user["headers"]).status_code == 404


def test_cannot_revoke_accepted_invitation(client, conn, admin_user, location):
    invitation = _invite(client, admin_user, location).json()
    friend_id = make_user(conn, "friend@example.com")
    client.post(
        "/api/invitations/accept",
        headers=auth_headers(friend_id),
        json={"token": _token(conn, invitation["id"])},
    )
    response = client.delete(f"/api/invitations/{invitation['id']}/revoke", headers=admin_user["headers"])
    assert response.status_code == 400
