# tests/api/test_inventory_api.py
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

import httpx
import pytest

from app.utils.time import utc_now

pytestmark = pytest.mark.smoke


async def _create_location(client: httpx.AsyncClient, name: str = "Shelf A") -> Dict[str, Any]:
    r = await client.post("/api/v1/locations", json={"name": name})
    assert r.status_code == 201, r.text
    return r.json()["data"]


async def _create_item(client: httpx.AsyncClient, name: str = "Widget", **extra) -> Dict[str, Any]:
    r = await client.post("/api/v1/items", json={"name": name, **extra})
    assert r.status_code == 201, r.text
    return r.json()["data"]


async def _add(client: httpx.AsyncClient, code: str, loc: str, **extra) -> httpx.Response:
    return await client.post("/api/v1/add-item", json={"item_barcode": code, "location_barcode": loc, **extra})


# ---------------------------------------------------------
# 主数据
# ---------------------------------------------------------
async def test_create_category_item_location(client: httpx.AsyncClient):
    r = await client.post("/api/v1/categories", json={"name": "Kitchen", "description": "pots"})
    assert r.status_code == 201, r.text
    cat = r.json()["data"]

    item = await _create_item(client, "Pan", category_id=cat["id"])
    assert item["barcode"].startswith("ITM") and len(item["barcode"]) == 11
    assert item["category_id"] == cat["id"]
    assert item["total_quantity"] == 0

    loc = await _create_location(client, "Cupboard")
    assert loc["barcode"].startswith("LOC") and len(loc["barcode"]) == 11

    r = await client.post("/api/v1/categories", json={"name": "Kitchen"})
    assert r.status_code == 422
    assert r.json()["details"][0]["reason"] == "category_name_taken"


async def test_create_item_requires_name(client: httpx.AsyncClient):
    r = await client.post("/api/v1/items", json={"description": "no name"})
    assert r.status_code == 422
    assert r.json()["error_code"] == "request_validation_error"


async def test_list_and_search_items_and_locations(client: httpx.AsyncClient):
    await _create_item(client, "Teapot")
    kettle = await _create_item(client, "Kettle")
    await _create_location(client, "Pantry")
    await _create_location(client, "Garage")

    r = await client.get("/api/v1/items")
    assert r.status_code == 200, r.text
    assert [i["name"] for i in r.json()["data"]] == ["Kettle", "Teapot"]

    r = await client.get("/api/v1/items", params={"limit": 1, "offset": 1})
    assert [i["name"] for i in r.json()["data"]] == ["Teapot"]

    r = await client.get("/api/v1/items/search", params={"q": "kett"})
    assert [i["barcode"] for i in r.json()["data"]] == [kettle["barcode"]]

    r = await client.get("/api/v1/items/search")
    assert r.status_code == 422

    r = await client.get("/api/v1/locations")
    assert [loc["name"] for loc in r.json()["data"]] == ["Garage", "Pantry"]

    r = await client.get("/api/v1/locations/search", params={"q": "PANT"})
    assert [loc["name"] for loc in r.json()["data"]] == ["Pantry"]

    r = await client.get("/api/v1/locations", params={"limit": 0})
    assert r.status_code == 422


# ---------------------------------------------------------
# 放入 / 取出 / 移库
# ---------------------------------------------------------
async def test_add_remove_roundtrip(client: httpx.AsyncClient):
    loc = await _create_location(client)
    item = await _create_item(client)

    r = await _add(client, item["barcode"], loc["barcode"], notes="first")
    assert r.status_code == 200, r.text
    body = r.json()
    unit = body["data"]["individual_item"]
    assert unit["individual_barcode"] == f"{item['barcode']}-00001"
    assert unit["sequence_number"] == 1
    assert unit["is_legacy_barcode"] is False
    assert body["message"] == f"Item added successfully. Individual barcode: {unit['individual_barcode']}"
    assert body["data"]["inventory_item"]["quantity"] == 1
    assert body["data"]["location"]["barcode"] == loc["barcode"]

    r = await client.get(f"/api/v1/items/{item['barcode']}")
    assert r.status_code == 200
    detail = r.json()["data"]
    assert detail["total_quantity"] == 1
    assert [row["location"]["barcode"] for row in detail["locations"]] == [loc["barcode"]]

    # 单件条码也能查到商品详情
    r = await client.get(f"/api/v1/items/{unit['individual_barcode']}")
    assert r.json()["data"]["id"] == item["id"]

    r = await client.post(
        "/api/v1/remove-item",
        json={"item_barcode": item["barcode"], "location_barcode": loc["barcode"]},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Item completely removed from location"
    assert body["data"]["completely_removed"] is True
    assert body["data"]["inventory_item"] is None
    removed = body["data"]["removed_individual_item"]
    assert removed["individual_barcode"] == unit["individual_barcode"]
    assert removed["policy"] == "fifo"

    r = await client.get(f"/api/v1/locations/{loc['barcode']}")
    assert r.json()["data"]["total_items"] == 0
    assert r.json()["data"]["inventory_items"] == []


async def test_remove_policies_over_http(client: httpx.AsyncClient):
    loc = await _create_location(client)
    item = await _create_item(client)
    now = utc_now()
    for days in (3, 2, 1):
        r = await _add(client, item["barcode"], loc["barcode"], added_at=(now - timedelta(days=days)).isoformat())
        assert r.status_code == 200, r.text

    r = await client.post(
        "/api/v1/remove-item",
        json={"item_barcode": item["barcode"], "location_barcode": loc["barcode"], "policy": "lifo"},
    )
    body = r.json()
    assert body["message"] == "Item removed successfully"
    assert body["data"]["removed_individual_item"]["individual_barcode"] == f"{item['barcode']}-00003"
    assert body["data"]["inventory_item"]["quantity"] == 2

    r = await client.post(
        "/api/v1/remove-item",
        json={
            "item_barcode": item["barcode"],
            "location_barcode": loc["barcode"],
            "unit_barcode": f"{item['barcode']}-00002",
        },
    )
    removed = r.json()["data"]["removed_individual_item"]
    assert removed["individual_barcode"] == f"{item['barcode']}-00002"
    assert removed["policy"] == "target"
    assert removed["storage_days"] == pytest.approx(2, abs=0.1)

    r = await client.post(
        "/api/v1/remove-item",
        json={"item_barcode": item["barcode"], "location_barcode": loc["barcode"], "policy": "random"},
    )
    assert r.status_code == 422


async def test_move_over_http(client: httpx.AsyncClient):
    shelf = await _create_location(client, "Shelf")
    garage = await _create_location(client, "Garage")
    item = await _create_item(client)
    added = (utc_now() - timedelta(days=10)).isoformat()
    unit = (await _add(client, item["barcode"], shelf["barcode"], added_at=added)).json()["data"]["individual_item"]

    r = await client.post(
        "/api/v1/move-item",
        json={"unit_barcode": unit["individual_barcode"], "to_location_barcode": garage["barcode"]},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Item moved successfully"
    assert body["data"]["moved_item"]["individual_barcode"] == unit["individual_barcode"]
    assert body["data"]["moved_item"]["added_at"] == unit["added_at"]
    assert body["data"]["source_inventory_item"] is None
    assert body["data"]["destination_inventory_item"]["quantity"] == 1
    assert body["data"]["from_location"]["barcode"] == shelf["barcode"]
    assert body["data"]["to_location"]["barcode"] == garage["barcode"]

    r = await client.post(
        "/api/v1/move-item",
        json={"unit_barcode": unit["individual_barcode"], "to_location_barcode": garage["barcode"]},
    )
    assert r.status_code == 422
    assert r.json()["details"][0]["reason"] == "move_to_same_location"


async def test_unknown_codes_are_404(client: httpx.AsyncClient):
    loc = await _create_location(client)
    item = await _create_item(client)

    r = await _add(client, "NOT-A-CODE", loc["barcode"])
    assert r.status_code == 404
    assert r.json()["error_code"] == "not_found"

    r = await _add(client, item["barcode"], "LOCMISSING0")
    assert r.status_code == 404

    r = await client.post(
        "/api/v1/remove-item",
        json={"item_barcode": item["barcode"], "location_barcode": loc["barcode"]},
    )
    assert r.status_code == 404

    r = await client.get("/api/v1/items/ITMMISSING0")
    assert r.status_code == 404


# ---------------------------------------------------------
# 扫码解析 / 条码池
# ---------------------------------------------------------
async def test_resolve_registers_legacy_barcode(client: httpx.AsyncClient):
    loc = await _create_location(client)
    item = await _create_item(client)

    r = await client.get(f"/api/v1/resolve/{item['barcode']}")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["matched_by"] == "item_barcode"
    assert data["pool_barcode"] == item["barcode"]
    assert data["pool_barcode_in_use"] is False

    body = (await _add(client, item["barcode"], loc["barcode"])).json()
    assert body["data"]["individual_item"]["is_legacy_barcode"] is True
    assert body["message"] == "Item added successfully"

    r = await client.get(f"/api/v1/resolve/{item['barcode']}-00009")
    assert r.json()["data"]["matched_by"] == "generated_pattern"

    r = await client.get("/api/v1/resolve/UNKNOWN")
    assert r.status_code == 404


async def test_pool_endpoints(client: httpx.AsyncClient):
    loc = await _create_location(client)
    item = await _create_item(client)

    r = await client.post(f"/api/v1/items/{item['barcode']}/pool/ensure", json={"target": 4})
    assert r.status_code == 200, r.text
    assert r.json()["data"] == {"total": 4, "in_use": 0, "available": 4, "utilization_percent": 0.0, "created": 4}

    await _add(client, item["barcode"], loc["barcode"])
    r = await client.get(f"/api/v1/items/{item['barcode']}/pool")
    assert r.json()["data"] == {"total": 4, "in_use": 1, "available": 3, "utilization_percent": 25.0}

    r = await client.post(f"/api/v1/items/{item['barcode']}/pool/ensure", json={"target": -1})
    assert r.status_code == 422


# ---------------------------------------------------------
# 查询 / 体检 / 状态
# ---------------------------------------------------------
async def test_search_oldest_and_units(client: httpx.AsyncClient):
    loc = await _create_location(client, "Attic")
    mug = await _create_item(client, "Red Mug")
    lamp = await _create_item(client, "Lamp")
    old = (utc_now() - timedelta(days=200)).isoformat()
    await _add(client, mug["barcode"], loc["barcode"], added_at=old)
    await _add(client, lamp["barcode"], loc["barcode"])

    r = await client.get("/api/v1/inventory/search", params={"q": "mug"})
    rows = r.json()["data"]
    assert [row["item"]["barcode"] for row in rows] == [mug["barcode"]]

    r = await client.get("/api/v1/inventory/search", params={"limit": 0})
    assert r.status_code == 422

    r = await client.get("/api/v1/inventory/oldest")
    report = r.json()["data"]
    assert report["rows"][0]["item"]["barcode"] == mug["barcode"]
    assert report["rows"][0]["aging"] == "danger"
    assert report["rows"][1]["aging"] == "fresh"
    assert report["older_than_danger"] == 1

    agg_id = rows[0]["id"]
    r = await client.get(f"/api/v1/inventory/aggregates/{agg_id}/units")
    units = r.json()["data"]
    assert [u["barcode"] for u in units] == [f"{mug['barcode']}-00001"]
    assert units[0]["storage_days"] == pytest.approx(200, abs=0.1)

    r = await client.get("/api/v1/inventory/aggregates/999999/units")
    assert r.status_code == 404


async def test_integrity_and_backfill_endpoints(client: httpx.AsyncClient):
    loc = await _create_location(client)
    item = await _create_item(client)
    await _add(client, item["barcode"], loc["barcode"])

    r = await client.get("/api/v1/integrity")
    assert r.status_code == 200
    assert r.json()["data"]["ok"] is True

    r = await client.post("/api/v1/integrity/reconcile")
    assert r.json()["message"] == "Nothing to reconcile"

    r = await client.post("/api/v1/legacy/backfill")
    assert r.status_code == 200
    assert r.json()["data"]["aggregates_converted"] == 0
    assert r.json()["message"] == "Backfill completed: 0 inventory items migrated"


async def test_status_health_and_metrics(client: httpx.AsyncClient):
    await _create_location(client)

    r = await client.get("/api/v1/status")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["service"] == "stockunits"
    assert data["database"]["connected"] is True
    assert data["database"]["locations_count"] == 1

    r = await client.get("/healthz")
    assert r.json() == {"status": "ok"}

    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "stockunits_units_added_total" in r.text
