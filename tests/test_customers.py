from conftest import auth, make_customer, make_job


def _payload(**overrides):
    payload = {
        "name": "Blue Lake Bakery",
        "email": "Orders@BlueLake.com",
        "phone": "3125550100",
        "address": {"street": "42 Lake Shore Dr", "city": "Chicago", "state": "IL", "zip_code": "60611"},
        "latitude": 41.9,
        "longitude": -87.62,
    }
    payload.update(overrides)
    return payload


def test_create_customer(client, dispatcher):
    r = client.post("/api/customers", json=_payload(), headers=auth(dispatcher))
    assert r.status_code == 201
    body = r.json()
    assert body["email"] == "orders@bluelake.com"
    assert body["address"]["country"] == "USA"
    assert body["latitude"] == 41.9


def test_create_customer_validates_zip(client, dispatcher):
    bad = _payload(address={"street": "42 Lake Shore Dr", "city": "Chicago", "state": "IL", "zip_code": "6061"})
    r = client.post("/api/customers", json=bad, headers=auth(dispatcher))
    assert r.status_code == 400
    assert any(e["field"].endswith("zip_code") for e in r.json()["errors"])


def test_create_customer_duplicate_email(client, dispatcher):
    assert client.post("/api/customers", json=_payload(), headers=auth(dispatcher)).status_code == 201
    r = client.post("/api/customers", json=_payload(name="Other"), headers=auth(dispatcher))
    assert r.status_code == 400


def test_technician_cannot_create_customer(client, technician):
    assert client.post("/api/customers", json=_payload(), headers=auth(technician)).status_code == 403


def test_list_customers_search(client, db, technician):
    make_customer(db, name="Alpha Dental")
    make_customer(db, name="Beta Bakery")
    r = client.get("/api/customers", params={"search": "dental"}, headers=auth(technician))
    assert r.status_code == 200
    assert [c["name"] for c in r.json()["items"]] == ["Alpha Dental"]


def test_update_customer_address_clears_coordinates(client, dispatcher, customer):
    r = client.put(
        f"/api/customers/{customer.id}",
        json={"address": {"street": "9 New Road", "city": "Evanston", "state": "IL", "zip_code": "60201"}},
        headers=auth(dispatcher),
    )
    assert r.status_code == 200
    body = r.json()
    assert body["address"]["city"] == "Evanston"
    # no Maps key in tests, so the old coordinates are dropped rather than kept stale
    assert body["latitude"] is None


def test_delete_customer_is_soft(client, manager, customer):
    r = client.delete(f"/api/customers/{customer.id}", headers=auth(manager))
    assert r.status_code == 200
    listed = client.get("/api/customers", headers=auth(manager)).json()
    assert listed["total"] == 0
    everything = client.get("/api/customers", params={"include_inactive": True}, headers=auth(manager)).json()
    assert everything["total"] == 1


def test_delete_customer_with_open_jobs_conflicts(client, db, manager, customer):
    make_job(db, customer, manager)
    r = client.delete(f"/api/customers/{customer.id}", headers=auth(manager))
    assert r.status_code == 409
    assert r.json()["error_type"] == "conflict"


def test_dispatcher_cannot_delete_customer(client, dispatcher, customer):
    assert client.delete(f"/api/customers/{customer.id}", headers=auth(dispatcher)).status_code == 403


def test_customer_jobs(client, db, manager, customer):
    make_job(db, customer, manager, name="First")
    make_job(db, customer, manager, name="Second", status="Completed")
    r = client.get(f"/api/customers/{customer.id}/jobs", params={"status": "Pending"}, headers=auth(manager))
    assert r.status_code == 200
    assert [j["name"] for j in r.json()["items"]] == ["First"]
    detail = client.get(f"/api/customers/{customer.id}", headers=auth(manager)).json()
    assert detail["job_count"] == 2
