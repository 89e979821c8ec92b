def test_admin_manages_users(client, admin_headers):
    r = client.post("/users", json={"username": "kasir", "password": "secret1"}, headers=admin_headers)
    assert r.status_code == 201
    uid = r.json()["id"]

    r = client.get(f"/users/{uid}", headers=admin_headers)
    assert r.status_code == 200
    user = r.json()
    assert user["username"] == "kasir"
    assert user["role"] == "user"
    assert user["is_active"] is True
    assert "password_hash" not in user

    # promote and rename in one patch
    r = client.put(f"/users/{uid}", json={"username": "kasir-utama", "role": "admin"}, headers=admin_headers)
    assert r.status_code == 200
    user = client.get(f"/users/{uid}", headers=admin_headers).json()
    assert user["username"] == "kasir-utama"
    assert user["role"] == "admin"

    # password change takes effect on next login
    client.put(f"/users/{uid}", json={"password": "brand-new"}, headers=admin_headers)
    assert client.post("/auth/login", json={"username": "kasir-utama", "password": "secret1"}).status_code == 401
    assert client.post("/auth/login", json={"username": "kasir-utama", "password": "brand-new"}).status_code == 200


def test_create_user_with_existing_username_creates_nothing(client, admin_headers):
    assert client.post("/users", json={"username": "rina", "password": "secret1"}, headers=admin_headers).status_code == 201
    r = client.post("/users", json={"username": "rina", "password": "secret2"}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Username already exists"
    listing = client.get("/users", params={"search": "rina"}, headers=admin_headers).json()
    assert listing["pagination"]["totalItems"] == 1


def test_rename_onto_existing_username_is_rejected(client, admin_headers, make_account):
    make_account("taken")
    uid, _ = make_account("renamer")
    r = client.put(f"/users/{uid}", json={"username": "taken"}, headers=admin_headers)
    assert r.status_code == 400


def test_users_listing_filters_by_role(client, admin_headers, make_account):
    make_account("alpha")
    make_account("bravo")
    make_account("charlie", role="admin")

    body = client.get("/users", params={"role": "user"}, headers=admin_headers).json()
    assert sorted(u["username"] for u in body["items"]) == ["alpha", "bravo"]

    body = client.get("/users", params={"role": "admin"}, headers=admin_headers).json()
    assert sorted(u["username"] for u in body["items"]) == ["admin", "charlie"]

    # newest first
    body = client.get("/users", headers=admin_headers).json()
    assert body["items"][0]["username"] == "charlie"
    assert body["pagination"]["totalItems"] == 4

    assert client.get("/users", params={"role": "owner"}, headers=admin_headers).status_code == 400


def test_soft_then_permanent_delete(client, admin_headers, make_account):
    uid, _ = make_account("leaving")

    r = client.delete(f"/users/{uid}", headers=admin_headers)
    assert r.status_code == 200
    assert client.get(f"/users/{uid}", headers=admin_headers).json()["is_active"] is False
    assert client.post("/auth/login", json={"username": "leaving", "password": "secret123"}).status_code == 401

    # reactivation goes through the regular update
    client.put(f"/users/{uid}", json={"is_active": True}, headers=admin_headers)
    assert client.post("/auth/login", json={"username": "leaving", "password": "secret123"}).status_code == 200

    r = client.delete(f"/users/{uid}/permanent", headers=admin_headers)
    assert r.status_code == 200
    assert client.get(f"/users/{uid}", headers=admin_headers).status_code == 404
    assert client.delete(f"/users/{uid}/permanent", headers=admin_headers).status_code == 404


def test_admin_cannot_deactivate_or_delete_self(client, admin):
    headers = admin["headers"]
    me = admin["id"]

    r = client.put(f"/users/{me}", json={"is_active": False}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "You cannot deactivate your own account"

    r = client.delete(f"/users/{me}", headers=headers)
    assert r.status_code == 400

    r = client.delete(f"/users/{me}/permanent", headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "You cannot delete your own account"

    # still there and still active
    assert client.get(f"/users/{me}", headers=headers).json()["is_active"] is True


def test_user_endpoints_require_admin(client, user_headers):
    assert client.get("/users").status_code == 401
    assert client.get("/users", headers=user_headers).status_code == 403
    assert client.post("/users", json={"username": "x-user", "password": "secret1"}, headers=user_headers).status_code == 403


def test_rename_to_short_name_after_markup_is_stripped(client, admin_headers, make_account):
    uid, _ = make_account("shorty")
    r = client.put(f"/users/{uid}", json={"username": "<b></b>ab"}, headers=admin_headers)
    assert r.status_code == 400
    assert client.get(f"/users/{uid}", headers=admin_headers).json()["username"] == "shorty"
