"""
Seller listings ("My Listings").
"""
from typing import List, Literal, Optional

from schemas import Listing
from storage import KeyValueStore, RecordCollection, scoped_key

LISTINGS_KEY = "rc_listings"

ListingTab = Literal["all", "active", "inactive"]


class Listings:
    def __init__(self, store: KeyValueStore, scope: Optional[str] = None):
        self.store = store
        self.key = scoped_key(LISTINGS_KEY, scope)
        self._records = RecordCollection(store, self.key, Listing)

    def all(self) -> List[Listing]:
        return self._records.all()

    def get(self, listing_id: str) -> Optional[Listing]:
        return self._records.get(listing_id)

    def upsert(self, listing: Listing) -> Listing:
        return self._records.upsert(listing)

    def delete(self, listing_id: str) -> bool:
        return self._records.delete(listing_id)

    def toggle(self, listing_id: str, active: bool) -> Optional[Listing]:
        with self.store.batch():
            listings = self.all()
            toggled = None
            for i, listing in enumerate(listings):
                if listing.id == listing_id:
                    toggled = listings[i] = listing.model_copy(update={"active": active})
            if toggled is not None:
                self._records.replace_all(listings)
        return toggled

    def search(self, q: Optional[str] = None, tab: ListingTab = "all") -> List[Listing]:
        """Match q against title or id (case-insensitive), then filter by tab."""
        needle = (q or "").lower()
        out = []
        for listing in self.all():
            if needle and needle not in listing.title.lower() and needle not in listing.id.lower():
                continue
            if tab == "active" and not listing.active:
                continue
            if tab == "inactive" and listing.active:
                continue
            out.append(listing)
        return out
