import os
import tempfile

import pytest

# Must be set before main/config are imported
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="recraft-uploads-"))
os.environ["STORE_BACKEND"] = "memory"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("PINCODE_SERVICE_URL", None)

from schemas import StoreProduct  # noqa: E402
from storage import KeyValueStore, MemoryBackend  # noqa: E402


@pytest.fixture
def store():
    return KeyValueStore(MemoryBackend())


@pytest.fixture
def make_product():
    def _make(id="p1", stock=5, price="₹1,000", listing_id=None, name=None):
        return StoreProduct(
            id=id,
            name=name or f"Product {id}",
            price=price,
            stock=stock,
            listing_id=listing_id,
        )
    return _make
