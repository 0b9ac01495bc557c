VEHICLE = {
    "make": "Honda",
    "model": "Civic",
    "year": 2021,
    "license_plate": "B-HC-2021",
    "type": "car",
    "fuel_type": "hybrid",
    "transmission": "automatic",
    "seats": 5,
    "price_per_day": 45.0,
    "location": "Berlin",
    "images": ["https://img.rental.io/civic.jpg"],
    "features": ["GPS"],
}


def test_listing_defaults_to_available(client, make_vehicle):
    make_vehicle()
    make_vehicle()
    make_vehicle(is_available=False)

    data = client.get("/vehicles").json()
    assert data["total"] == 2
    assert data["availableCount"] == 2
    assert data["showing"] == 2
    assert all(v["is_available"] for v in data["vehicles"])

    data = client.get("/vehicles", params={"available": "all"}).json()
    assert data["total"] == 3
    assert data["availableCount"] == 2


def test_listing_pagination(client, make_vehicle):
    for _ in range(25):
        make_vehicle()
    data = client.get("/vehicles", params={"page": 3, "limit": 12}).json()
    assert data["totalPages"] == 3
    assert data["currentPage"] == 3
    assert data["showing"] == 1

    assert client.get("/vehicles", params={"page": 0}).status_code == 400


def test_listing_filters(client, make_vehicle):
    make_vehicle(seats=8, location="Munich", price_per_day=90.0)
    make_vehicle(seats=12, location="munich", type="van", price_per_day=140.0)
    make_vehicle(seats=5, location="Hamburg", price_per_day=30.0)

    data = client.get("/vehicles", params={"seats": "8"}).json()
    assert sorted(v["seats"] for v in data["vehicles"]) == [8, 12]

    data = client.get("/vehicles", params={"location": "MUNICH", "maxPrice": 100}).json()
    assert [v["seats"] for v in data["vehicles"]] == [8]

    data = client.get("/vehicles", params={"sortBy": "price", "sortOrder": "asc"}).json()
    assert [v["price_per_day"] for v in data["vehicles"]] == [30.0, 90.0, 140.0]
    assert data["filters"]["sortBy"] == "price"

    assert client.get("/vehicles", params={"seats": "many"}).status_code == 400
    assert client.get("/vehicles", params={"available": "maybe"}).status_code == 400


def test_get_vehicle_populates_seller(client, make_user, make_vehicle):
    seller, _ = make_user("seller")
    vehicle = make_vehicle(seller_id=seller["_id"])
    data = client.get(f"/vehicles/{vehicle['_id']}").json()
    assert data["seller"]["email"] == seller["email"]
    assert "password_hash" not in data["seller"]

    assert client.get("/vehicles/not-an-id").status_code == 400
    assert client.get("/vehicles/65f000000000000000000000").status_code == 404


def test_seller_adds_vehicle(client, db, make_user):
    seller, headers = make_user("seller")
    resp = client.post("/vehicles", json=VEHICLE, headers=headers)
    assert resp.status_code == 201
    stored = db["vehicle"].find_one({"license_plate": "B-HC-2021"})
    assert stored["seller_id"] == seller["_id"]
    assert stored["is_available"] is True

    resp = client.post("/vehicles", json=VEHICLE, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "A vehicle with this license plate already exists"


def test_customers_cannot_add_vehicles(client, make_user):
    _, headers = make_user("customer")
    assert client.post("/vehicles", json=VEHICLE, headers=headers).status_code == 403
    assert client.post("/vehicles", json=VEHICLE).status_code == 401


def test_invalid_vehicle_is_rejected(client, make_user):
    _, headers = make_user("seller")
    body = {**VEHICLE, "price_per_day": 0, "type": "boat"}
    assert client.post("/vehicles", json=body, headers=headers).status_code == 400


def test_only_owner_or_admin_can_modify(client, db, make_user, make_vehicle):
    owner, owner_headers = make_user("seller")
    _, other_headers = make_user("seller")
    _, admin_headers = make_user("admin")
    vehicle = make_vehicle(seller_id=owner["_id"])

    resp = client.put(f"/vehicles/{vehicle['_id']}", json={"price_per_day": 60}, headers=other_headers)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Not authorized to update this vehicle"

    resp = client.put(f"/vehicles/{vehicle['_id']}", json={"price_per_day": 60}, headers=owner_headers)
    assert resp.status_code == 200
    assert db["vehicle"].find_one({"_id": vehicle["_id"]})["price_per_day"] == 60

    resp = client.delete(f"/vehicles/{vehicle['_id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert db["vehicle"].count_documents({}) == 0


def test_my_vehicles_and_stats(client, make_user, make_vehicle):
    seller, headers = make_user("seller")
    make_vehicle(seller_id=seller["_id"])
    make_vehicle(seller_id=seller["_id"], is_available=False, fuel_type="electric")
    make_vehicle()

    mine = client.get("/vehicles/seller/my-vehicles", headers=headers).json()
    assert len(mine) == 2

    stats = client.get("/vehicles/stats").json()
    assert stats["totalVehicles"] == 3
    assert stats["unavailableVehicles"] == 1
    assert stats["vehiclesByFuel"][0] == {"value": "petrol", "count": 2}


def test_featured_needs_images(client, make_vehicle):
    make_vehicle(images=["https://img.rental.io/a.jpg"])
    make_vehicle()
    data = client.get("/vehicles/featured").json()
    assert len(data["vehicles"]) == 1
