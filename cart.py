"""
Cart store

The booking cart as the browser holds it before checkout: a list of lines,
a handful of reducer methods, and the two derived amounts shown to the
customer. Only part of the state is durable. Photos stay in memory for the
current session and are never written to storage, since they are large
enough to exhaust a browser's storage quota.
"""
import logging
from typing import Any, Dict, List, MutableMapping, Optional

from pydantic import BaseModel, ValidationError

import config
from schemas import CartItem, CartService, SavedCartItem

logger = logging.getLogger("tailorspace.cart")

CART_STORAGE_KEY = "tailorspace-cart"
PICKUP_DATE_KEY = "pickup_date"
PICKUP_SLOT_KEY = "pickup_slot"

# The only CartItem fields written to storage.
PERSISTED_ITEM_FIELDS = {"service", "quantity", "garment_description", "notes"}


class CartSnapshot(BaseModel):
    """The stored form of a cart under CART_STORAGE_KEY."""
    items: List[CartItem] = []

    def to_storage(self) -> str:
        return self.model_dump_json(include={"items": {"__all__": PERSISTED_ITEM_FIELDS}})


def line_amount(price: int, quantity: int) -> int:
    return price * quantity


def cart_total(subtotal: int, item_count: int) -> int:
    # No lines means no delivery, so no fee either.
    if item_count == 0:
        return 0
    return subtotal + config.DELIVERY_FEE


class CartStore:
    """In-memory cart with an explicit persistence boundary.

    ``storage`` is any string-keyed mapping standing in for browser local
    storage. Every mutation writes the snapshot back; last writer wins when
    two stores share the same storage.
    """

    def __init__(self, storage: Optional[MutableMapping[str, str]] = None, items: Optional[List[CartItem]] = None):
        self.storage = storage
        self.items: List[CartItem] = list(items or [])

    # Reducers

    def add_item(self, service: CartService) -> None:
        self.items = self.items + [CartItem(service=service)]
        self._persist()

    def update_item(self, index: int, updates: Dict[str, Any]) -> None:
        if not 0 <= index < len(self.items):
            return
        current = self.items[index]
        merged = current.model_copy(update=updates)
        try:
            merged = CartItem.model_validate(merged.model_dump())
        except ValidationError:
            logger.warning("Ignoring invalid cart update at index %s: %s", index, updates)
            return
        self.items = [merged if i == index else item for i, item in enumerate(self.items)]
        self._persist()

    def remove_item(self, index: int) -> None:
        self.items = [item for i, item in enumerate(self.items) if i != index]
        self._persist()

    def clear_cart(self) -> None:
        self.items = []
        self._persist()

    # Derived state

    def subtotal(self) -> int:
        return sum(line_amount(item.service.price, item.quantity) for item in self.items)

    def total(self) -> int:
        return cart_total(self.subtotal(), len(self.items))

    # Pickup scheduling lives next to the snapshot as flat keys.

    def set_pickup(self, pickup_date: Optional[str], pickup_slot: Optional[str]) -> None:
        if self.storage is None:
            return
        for key, value in ((PICKUP_DATE_KEY, pickup_date), (PICKUP_SLOT_KEY, pickup_slot)):
            if value is None:
                self.storage.pop(key, None)
            else:
                self.storage[key] = value

    def pickup(self) -> Dict[str, Optional[str]]:
        if self.storage is None:
            return {"pickup_date": None, "pickup_slot": None}
        return {
            "pickup_date": self.storage.get(PICKUP_DATE_KEY),
            "pickup_slot": self.storage.get(PICKUP_SLOT_KEY),
        }

    # Persistence

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(items=self.items)

    def saved_items(self) -> List[SavedCartItem]:
        """The snapshot in the shape the server-side cart sync stores."""
        return [
            SavedCartItem(
                service_id=item.service.id,
                service_name=item.service.name,
                service_price=item.service.price,
                garment_description=item.garment_description,
                quantity=item.quantity,
                notes=item.notes,
            )
            for item in self.items
        ]

    def _persist(self) -> None:
        if self.storage is None:
            return
        self.storage[CART_STORAGE_KEY] = self.snapshot().to_storage()

    @classmethod
    def load(cls, storage: MutableMapping[str, str]) -> "CartStore":
        raw = storage.get(CART_STORAGE_KEY)
        if not raw:
            return cls(storage)
        try:
            snapshot = CartSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable cart snapshot: %s", e)
            return cls(storage)
        return cls(storage, snapshot.items)

    @classmethod
    def from_saved(cls, saved: List[SavedCartItem], storage: Optional[MutableMapping[str, str]] = None) -> "CartStore":
        """Rebuild a cart from a saved server-side copy, e.g. after a recovery link."""
        store = cls(storage)
        store.clear_cart()
        for line in saved:
            store.add_item(CartService(id=line.service_id, name=line.service_name, price=line.service_price))
            store.update_item(len(store.items) - 1, {
                "garment_description": line.garment_description,
                "quantity": line.quantity,
                "notes": line.notes,
            })
        return store
