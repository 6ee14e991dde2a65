"""
Storefront products: the seeded demo catalog plus products users created by
listing something for sale.
"""
from typing import Any, Dict, List, Optional

from schemas import StoreProduct
from storage import KeyValueStore, RecordCollection

USER_PRODUCTS_KEY = "rc_user_products"

DEMO_PRODUCTS = [
    StoreProduct(
        id="1",
        name="Upcycled Denim Tote",
        image="/static/products/denim-tote.jpg",
        price="₹1,200",
        quality="Like new",
        location="Bengaluru",
        description="Roomy tote stitched from reclaimed denim with canvas lining.",
        rating=4.7,
        stock=12,
    ),
    StoreProduct(
        id="2",
        name="Reclaimed Teak Side Table",
        image="/static/products/teak-table.jpg",
        price="₹6,500",
        quality="Refurbished",
        location="Pune",
        description="Hand-finished side table built from salvaged teak beams.",
        rating=4.8,
        stock=3,
    ),
    StoreProduct(
        id="3",
        name="Glass Bottle Pendant Lamp",
        image="/static/products/bottle-lamp.jpg",
        price="₹2,500",
        quality="Handmade",
        location="Chennai",
        description="Pendant lamp blown from recycled glass bottles.",
        rating=4.5,
        stock=8,
    ),
    StoreProduct(
        id="4",
        name="Tyre Rubber Planter Set",
        image="/static/products/tyre-planters.jpg",
        price="₹850",
        quality="Good",
        location="Hyderabad",
        description="Set of three planters cut from retired scooter tyres.",
        rating=4.3,
        stock=20,
    ),
]


class UserProducts:
    def __init__(self, store: KeyValueStore):
        self.store = store
        self._records = RecordCollection(store, USER_PRODUCTS_KEY, StoreProduct)

    def all(self) -> List[StoreProduct]:
        return self._records.all()

    def get(self, product_id: str) -> Optional[StoreProduct]:
        return self._records.get(product_id)

    def add(self, product: StoreProduct) -> StoreProduct:
        """Append product. A product for a listing that already has one replaces it."""
        with self.store.batch():
            products = self.all()
            if product.listing_id:
                products = [p for p in products if p.listing_id != product.listing_id]
            products.append(product)
            self._records.replace_all(products)
        return product

    def find_by_listing_id(self, listing_id: str) -> List[StoreProduct]:
        return [p for p in self.all() if p.listing_id == listing_id]

    def remove_by_listing_id(self, listing_id: str) -> int:
        with self.store.batch():
            products = self.all()
            kept = [p for p in products if p.listing_id != listing_id]
            removed = len(products) - len(kept)
            if removed:
                self._records.replace_all(kept)
        return removed

    def update_by_listing_id(self, listing_id: str, patch: Dict[str, Any]) -> List[StoreProduct]:
        with self.store.batch():
            products = self.all()
            updated = []
            for i, product in enumerate(products):
                if product.listing_id == listing_id:
                    products[i] = product.model_copy(update=patch)
                    updated.append(products[i])
            if updated:
                self._records.replace_all(products)
        return updated


def storefront(store: KeyValueStore) -> List[StoreProduct]:
    return list(DEMO_PRODUCTS) + UserProducts(store).all()


def find_storefront_product(store: KeyValueStore, product_id: str) -> Optional[StoreProduct]:
    return next((p for p in storefront(store) if p.id == product_id), None)
