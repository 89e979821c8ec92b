from decimal import Decimal


def order(catalog, *names, **extra):
    payload = {
        "user_name": "Budi",
        "user_address": "Jl. Merdeka 1, Bandung",
        "flashdisk_id": catalog["flashdisk_id"],
        "games": [{"id": catalog["games"][n]} for n in names],
    }
    payload.update(extra)
    return payload


def test_order_that_fits_is_recorded_and_read_back(client, catalog):
    r = client.post("/transactions", json=order(catalog, "Celeste", "Hades"))
    assert r.status_code == 201
    body = r.json()
    assert body["transaction_id"].startswith("TXN-")
    assert Decimal(body["total_size_gb"]) == Decimal("7.0")

    r = client.get(f"/transactions/{body['transaction_id']}")
    assert r.status_code == 200
    txn = r.json()
    assert len(txn["games"]) == 2
    assert Decimal(txn["total_size_gb"]) == sum(Decimal(g["size_gb"]) for g in txn["games"])
    assert txn["flashdisk_name"] == "Flashdisk 8GB"
    assert Decimal(txn["real_capacity_gb"]) == Decimal("7.4")
    assert txn["game_names"] == "Celeste, Hades"
    assert txn["status"] == "pending"
    assert txn["user_address"] == "Jl. Merdeka 1, Bandung"


def test_order_over_capacity_is_rejected(client, catalog, admin_headers):
    r = client.post("/transactions", json=order(catalog, "Celeste", "Hollow Knight"))
    assert r.status_code == 400
    error = r.json()["error"]
    assert "7.5" in error and "7.4" in error
    # nothing was stored
    listing = client.get("/transactions", headers=admin_headers).json()
    assert listing["pagination"]["totalItems"] == 0


def test_order_exactly_at_capacity_is_accepted(client, catalog):
    r = client.post("/transactions", json=order(catalog, "Stardew Valley", "Hades"))
    assert r.status_code == 201
    assert Decimal(r.json()["total_size_gb"]) == Decimal("7.4")


def test_unknown_flashdisk_is_rejected_first(client, catalog):
    payload = order(catalog, "Celeste")
    payload["flashdisk_id"] = 9999
    payload["games"] = [{"id": 424242}]
    r = client.post("/transactions", json=payload)
    assert r.status_code == 400
    assert r.json()["error"] == "Flashdisk not found"


def test_inactive_flashdisk_is_rejected(client, catalog, admin_headers):
    client.delete(f"/flashdisks/{catalog['flashdisk_id']}", headers=admin_headers)
    r = client.post("/transactions", json=order(catalog, "Celeste"))
    assert r.status_code == 400
    assert r.json()["error"] == "Flashdisk is not available"


def test_empty_selection_is_rejected(client, catalog):
    r = client.post("/transactions", json=order(catalog))
    assert r.status_code == 400
    assert r.json()["error"] == "Select at least one game"


def test_unknown_duplicate_or_unavailable_games_are_rejected(client, catalog, admin_headers):
    payload = order(catalog, "Celeste")
    payload["games"].append({"id": 999})
    r = client.post("/transactions", json=payload)
    assert r.status_code == 400
    assert r.json()["error"] == "Game not found: 999"

    r = client.post("/transactions", json=order(catalog, "Celeste", "Celeste"))
    assert r.status_code == 400

    client.put(f"/games/{catalog['games']['Hades']}", json={"status": "unavailable"}, headers=admin_headers)
    r = client.post("/transactions", json=order(catalog, "Hades"))
    assert r.status_code == 400
    assert "not available" in r.json()["error"]


def test_submitted_total_must_match_catalog(client, catalog):
    r = client.post("/transactions", json=order(catalog, "Celeste", "Hades", total_size_gb="5.0"))
    assert r.status_code == 400
    assert "does not match" in r.json()["error"]

    r = client.post("/transactions", json=order(catalog, "Celeste", "Hades", total_size_gb="7.00"))
    assert r.status_code == 201


def test_bare_game_ids_are_accepted(client, catalog):
    payload = order(catalog)
    payload["games"] = [catalog["games"]["Celeste"]]
    r = client.post("/transactions", json=payload)
    assert r.status_code == 201


def test_missing_fields_are_validation_errors(client, catalog):
    r = client.post("/transactions", json={"flashdisk_id": catalog["flashdisk_id"], "games": []})
    assert r.status_code == 400
    assert "user_name" in r.json()["error"]


def test_unknown_transaction_is_404(client):
    r = client.get("/transactions/TXN-0-missing")
    assert r.status_code == 404
    assert r.json()["error"] == "Transaction not found"


def test_history_survives_game_deletion(client, catalog, admin_headers):
    txn_id = client.post("/transactions", json=order(catalog, "Celeste")).json()["transaction_id"]
    client.delete(f"/games/{catalog['games']['Celeste']}", headers=admin_headers)

    txn = client.get(f"/transactions/{txn_id}").json()
    assert txn["games"][0]["name"] == "Celeste"
    assert txn["games"][0]["game_id"] is None
    assert Decimal(txn["games"][0]["size_gb"]) == Decimal("3.0")


def test_admin_listing_search_and_clear(client, catalog, admin_headers, user_headers):
    first = client.post("/transactions", json=order(catalog, "Celeste")).json()["transaction_id"]
    client.post("/transactions", json=order(catalog, "Hades", user_name="Siti"))

    assert client.get("/transactions").status_code == 401
    assert client.get("/transactions", headers=user_headers).status_code == 403

    body = client.get("/transactions", headers=admin_headers).json()
    assert body["pagination"]["totalItems"] == 2
    # newest first
    assert body["items"][0]["user_name"] == "Siti"
    assert body["items"][1]["game_names"] == "Celeste"

    def search(term):
        items = client.get("/transactions", params={"search": term}, headers=admin_headers).json()["items"]
        return [t["transaction_id"] for t in items]

    assert search("celeste") == [first]
    assert search(first) == [first]
    assert len(search("flashdisk 8")) == 2
    assert len(search("siti")) == 1

    r = client.delete(f"/transactions/{first}", headers=admin_headers)
    assert r.status_code == 200
    assert client.get(f"/transactions/{first}").status_code == 404

    r = client.delete("/transactions/clear", headers=admin_headers)
    assert r.status_code == 200
    assert client.get("/transactions", headers=admin_headers).json()["pagination"]["totalItems"] == 0
