"""
Keep storefront products in step with the seller listings they came from.

Each listing has at most one derived product (UserProducts.add replaces any
existing one for the same listing). Cascading writes go through a single
store batch so a failure part-way leaves both collections untouched.
"""
import logging
from typing import Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from errors import FormValidationError, NotFoundError
from ids import new_id
from listings import Listings
from products import UserProducts
from schemas import Listing, StoreProduct, utc_now_iso
from shop import format_rupees
from storage import KeyValueStore

logger = logging.getLogger(__name__)


class ListingDraft(BaseModel):
    title: str = Field(..., min_length=1)
    price: int = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    category: Optional[str] = None
    active: bool = True
    # storefront-only fields
    image: str = ""
    quality: str = ""
    location: str = ""
    description: str = ""

    @classmethod
    def parse(cls, data: dict) -> "ListingDraft":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise FormValidationError.from_pydantic(e)


def publish_listing(store: KeyValueStore, draft: ListingDraft, seller_id: Optional[str] = None) -> Tuple[Listing, StoreProduct]:
    listing = Listing(
        id=new_id(),
        title=draft.title.strip(),
        price=draft.price,
        stock=draft.stock,
        active=draft.active,
        category=draft.category,
        seller_id=seller_id,
        created_at=utc_now_iso(),
    )
    product = StoreProduct(
        id=new_id(),
        name=listing.title,
        image=draft.image,
        price=format_rupees(listing.price),
        quality=draft.quality,
        location=draft.location,
        description=draft.description,
        rating=0,
        stock=listing.stock,
        listing_id=listing.id,
    )
    with store.batch():
        Listings(store, seller_id).upsert(listing)
        UserProducts(store).add(product)
    logger.info("Published listing %s as product %s", listing.id, product.id)
    return listing, product


def edit_listing(store: KeyValueStore, listing_id: str, draft: ListingDraft, seller_id: Optional[str] = None) -> Listing:
    """Save the edited listing and patch the display fields of its product."""
    listings = Listings(store, seller_id)
    with store.batch():
        existing = listings.get(listing_id)
        if existing is None:
            raise NotFoundError("Listing not found")

        listing = existing.model_copy(update={
            "title": draft.title.strip(),
            "price": draft.price,
            "stock": draft.stock,
            "active": draft.active,
            "category": draft.category,
        })
        patch = {"name": listing.title, "price": format_rupees(listing.price), "stock": listing.stock}
        if draft.image:
            patch["image"] = draft.image

        listings.upsert(listing)
        UserProducts(store).update_by_listing_id(listing_id, patch)
    return listing


def toggle_listing(store: KeyValueStore, listing_id: str, active: bool, seller_id: Optional[str] = None) -> Listing:
    listing = Listings(store, seller_id).toggle(listing_id, active)
    if listing is None:
        raise NotFoundError("Listing not found")
    return listing


def delete_listing(store: KeyValueStore, listing_id: str, seller_id: Optional[str] = None) -> int:
    """Delete the listing and every product derived from it. Returns how many products went."""
    with store.batch():
        if not Listings(store, seller_id).delete(listing_id):
            raise NotFoundError("Listing not found")
        removed = UserProducts(store).remove_by_listing_id(listing_id)
    logger.info("Deleted listing %s and %d derived product(s)", listing_id, removed)
    return removed
