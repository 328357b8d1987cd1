"""
Tests for the client-side cart store: reducers, derived totals and the
persistence boundary that keeps photos out of storage.
"""
import json

import pytest

import config
from cart import CART_STORAGE_KEY, PICKUP_DATE_KEY, PICKUP_SLOT_KEY, CartSnapshot, CartStore
from schemas import CartService, SavedCartItem

HEM = CartService(id="svc-hem", name="Trouser hem", price=1500)
ZIP = CartService(id="svc-zip", name="Zip replacement", price=2250)
TAKE_IN = CartService(id="svc-take-in", name="Take in waist", price=1999)


@pytest.fixture
def storage():
    return {}


@pytest.fixture
def store(storage):
    return CartStore(storage)


def expected_subtotal(store):
    return sum(item.service.price * item.quantity for item in store.items)


def test_add_item_defaults(store):
    store.add_item(HEM)
    item = store.items[0]
    assert item.quantity == 1
    assert item.garment_description == ""
    assert item.notes == ""
    assert item.photos == []


def test_empty_cart_total_is_zero(store):
    assert store.subtotal() == 0
    assert store.total() == 0


def test_total_adds_delivery_fee(store):
    store.add_item(HEM)
    store.add_item(ZIP)
    assert store.subtotal() == 3750
    assert store.total() == 3750 + config.DELIVERY_FEE
    assert config.DELIVERY_FEE == 700


def test_total_back_to_zero_after_last_removal(store):
    store.add_item(HEM)
    store.remove_item(0)
    assert store.total() == 0


def test_subtotal_tracks_mixed_operations(store):
    store.add_item(HEM)
    assert store.subtotal() == expected_subtotal(store)
    store.add_item(ZIP)
    store.update_item(1, {"quantity": 3})
    assert store.subtotal() == expected_subtotal(store) == 1500 + 3 * 2250
    store.add_item(TAKE_IN)
    store.remove_item(0)
    assert store.subtotal() == expected_subtotal(store) == 3 * 2250 + 1999
    store.update_item(1, {"quantity": 2})
    assert store.subtotal() == expected_subtotal(store) == 3 * 2250 + 2 * 1999
    store.clear_cart()
    assert store.subtotal() == 0


@pytest.mark.parametrize("index", [-1, 1, 5])
def test_update_out_of_range_is_noop(store, storage, index):
    store.add_item(HEM)
    before = [item.model_copy() for item in store.items]
    persisted = storage[CART_STORAGE_KEY]
    store.update_item(index, {"quantity": 4, "notes": "x"})
    assert store.items == before
    assert storage[CART_STORAGE_KEY] == persisted


def test_update_merges_fields(store):
    store.add_item(HEM)
    store.update_item(0, {"garment_description": "Blue jeans", "notes": "2cm shorter"})
    item = store.items[0]
    assert item.garment_description == "Blue jeans"
    assert item.notes == "2cm shorter"
    assert item.quantity == 1


def test_update_rejects_invalid_quantity(store):
    store.add_item(HEM)
    store.update_item(0, {"quantity": 0})
    assert store.items[0].quantity == 1


def test_remove_preserves_order(store):
    store.add_item(HEM)
    store.add_item(ZIP)
    store.add_item(TAKE_IN)
    store.remove_item(1)
    assert [item.service.id for item in store.items] == ["svc-hem", "svc-take-in"]


def test_remove_out_of_range_is_noop(store):
    store.add_item(HEM)
    store.remove_item(3)
    assert len(store.items) == 1


def test_photos_live_in_memory_but_not_in_storage(store, storage):
    store.add_item(HEM)
    store.update_item(0, {"photos": ["blob:photo-1", "blob:photo-2"], "notes": "see photos"})
    assert store.items[0].photos == ["blob:photo-1", "blob:photo-2"]

    snapshot = json.loads(storage[CART_STORAGE_KEY])
    assert "photos" not in snapshot["items"][0]
    assert snapshot["items"][0]["notes"] == "see photos"


def test_photos_kept_when_update_omits_them(store):
    store.add_item(HEM)
    store.update_item(0, {"photos": ["blob:photo-1"]})
    store.update_item(0, {"notes": "hem only"})
    assert store.items[0].photos == ["blob:photo-1"]


def test_load_restores_snapshot_without_photos(store, storage):
    store.add_item(HEM)
    store.update_item(0, {"garment_description": "Grey suit trousers", "quantity": 2, "photos": ["blob:a"]})

    restored = CartStore.load(storage)
    assert len(restored.items) == 1
    assert restored.items[0].garment_description == "Grey suit trousers"
    assert restored.items[0].quantity == 2
    assert restored.items[0].photos == []
    assert restored.total() == 2 * 1500 + config.DELIVERY_FEE


def test_load_discards_corrupt_snapshot():
    restored = CartStore.load({CART_STORAGE_KEY: "{not json"})
    assert restored.items == []


def test_storage_value_is_a_cart_snapshot(store, storage):
    store.add_item(HEM)
    store.update_item(0, {"quantity": 3, "photos": ["blob:a"]})

    snapshot = CartSnapshot.model_validate_json(storage[CART_STORAGE_KEY])
    assert snapshot.items[0].service.price == 1500
    assert snapshot.items[0].quantity == 3
    assert snapshot.items[0].photos == []


def test_load_discards_snapshot_with_invalid_line():
    raw = json.dumps({"items": [{"service": {"id": "svc-hem", "name": "Trouser hem", "price": 1500}, "quantity": 0}]})
    assert CartStore.load({CART_STORAGE_KEY: raw}).items == []


def test_pickup_stored_as_flat_keys(store, storage):
    store.set_pickup("2026-10-21", "morning")
    assert storage[PICKUP_DATE_KEY] == "2026-10-21"
    assert storage[PICKUP_SLOT_KEY] == "morning"
    assert store.pickup() == {"pickup_date": "2026-10-21", "pickup_slot": "morning"}
    store.set_pickup(None, None)
    assert PICKUP_DATE_KEY not in storage


def test_store_without_storage_still_works():
    store = CartStore()
    store.add_item(HEM)
    assert store.total() == 1500 + config.DELIVERY_FEE


def test_from_saved_rebuilds_cart():
    saved = [
        SavedCartItem(service_id="svc-zip", service_name="Zip replacement", service_price=2250,
                      garment_description="Winter coat", quantity=2, notes=""),
    ]
    store = CartStore.from_saved(saved)
    assert store.items[0].service.id == "svc-zip"
    assert store.items[0].quantity == 2
    assert store.saved_items() == saved
