from datetime import datetime, timezone

import pytest

import main
from conftest import add_vehicle
from inventory import MAX_LIMIT, is_sentinel, parse_inventory_query


def at(month):
    return datetime(2024, month, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", [None, "", "  ", "all", "All Makes", "ANY", "any model", "undefined", "null"])
def test_sentinels_mean_no_filter(value):
    assert is_sentinel(value)


@pytest.mark.parametrize("value", ["Toyota", "Allison", "Anyway", "0"])
def test_real_values_are_not_sentinels(value):
    assert not is_sentinel(value)


def test_parse_maps_params_to_constraints():
    query = parse_inventory_query({
        "make": "All Makes",
        "model": "Camry",
        "bodyType": "SUV",
        "minPrice": "abc",
        "maxPrice": "$15,000",
        "mileage": "60000",
        "year": "2019",
    })
    assert query.to_store_query() == {
        "model": "Camry",
        "body_type": "SUV",
        "year": 2019,
        "status": "available",
        "price": {"$lte": 15000.0},
        "mileage": {"$lte": 60000},
    }


def test_status_sentinel_removes_default():
    assert "status" not in parse_inventory_query({"status": "all"}).to_store_query()
    assert parse_inventory_query({"status": "Sold"}).to_store_query()["status"] == "sold"


def test_paging_is_clamped():
    query = parse_inventory_query({"page": "-3", "limit": "5000", "sort": "bogus"})
    assert query.page == 1
    assert query.limit == MAX_LIMIT
    assert query.sort_spec() == [("created_at", -1)]
    assert parse_inventory_query({"page": "3", "limit": "10"}).skip == 20


def test_featured_flag():
    assert parse_inventory_query({"featured": "true"}).equals["featured"] is True
    assert "featured" not in parse_inventory_query({"featured": "maybe"}).equals


def test_toyota_price_window_newest_first(client, store):
    add_vehicle(store, make="Toyota", price=10000.0, created_at=at(1))
    newest = add_vehicle(store, make="Toyota", price=12000.0, created_at=at(3))
    add_vehicle(store, make="Toyota", price=20000.0, created_at=at(4))
    add_vehicle(store, make="Toyota", price=9000.0, status="sold", created_at=at(5))
    add_vehicle(store, make="Honda", price=10000.0, created_at=at(6))

    response = client.get(
        "/api/vehicles",
        params={"make": "Toyota", "minPrice": "5000", "maxPrice": "15000", "status": "available"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert [v["price"] for v in body["vehicles"]] == [12000.0, 10000.0]
    assert body["vehicles"][0]["id"] == newest["id"]
    for vehicle in body["vehicles"]:
        assert vehicle["make"] == "Toyota"
        assert 5000 <= vehicle["price"] <= 15000
        assert vehicle["status"] == "available"


def test_listing_defaults_to_available(client, store):
    add_vehicle(store, status="sold")
    add_vehicle(store)
    assert client.get("/api/vehicles").json()["total"] == 1
    assert client.get("/api/vehicles", params={"status": "all"}).json()["total"] == 2


def test_sort_and_pagination(client, store):
    for month in range(1, 13):
        add_vehicle(store, price=1000.0 * month, created_at=at(month))
    add_vehicle(store, price=500.0, created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))

    first = client.get("/api/vehicles", params={"sort": "price_asc", "limit": "5"}).json()
    assert [v["price"] for v in first["vehicles"]] == [500.0, 1000.0, 2000.0, 3000.0, 4000.0]
    assert first["pages"] == 3

    last = client.get("/api/vehicles", params={"page": "2"}).json()
    assert last["page"] == 2
    assert len(last["vehicles"]) == 1
    assert last["vehicles"][0]["price"] == 1000.0


def test_garbage_numbers_are_ignored(client, store):
    add_vehicle(store)
    response = client.get("/api/vehicles", params={"minPrice": "cheap", "maxMileage": "lots", "page": "x"})
    assert response.status_code == 200
    assert response.json()["total"] == 1


def test_store_failure_gives_empty_envelope(client, store):
    add_vehicle(store)
    store.fail = True
    response = client.get("/api/vehicles", params={"make": "Toyota"})
    assert response.status_code == 200
    assert response.json()["vehicles"] == []
    assert response.json()["total"] == 0


def test_missing_database_gives_empty_envelope(client):
    main.app.dependency_overrides[main.get_store] = lambda: None
    body = client.get("/api/vehicles").json()
    assert body["vehicles"] == []
    assert body["total"] == 0
