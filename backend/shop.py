"""
Cart, wishlist and rupee price helpers.
"""
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from pydantic import BaseModel

from errors import FormValidationError
from schemas import CartItem, StoreProduct
from storage import KeyValueStore, RecordCollection, scoped_key

CART_KEY = "rc_cart"
WISHLIST_KEY = "rc_wishlist"

FREE_SHIPPING_THRESHOLD = 3000
FLAT_SHIPPING = 99
COUPON_DISCOUNT = "GREEN10"
COUPON_FREE_SHIPPING = "FREESHIP"


def round_half_up(n: float) -> int:
    return int(Decimal(str(n)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_rupees(n: float) -> str:
    """Whole rupees with Indian digit grouping: 123456 -> '₹1,23,456'."""
    value = round_half_up(n)
    sign = "-" if value < 0 else ""
    digits = str(abs(value))
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    grouped = ",".join(groups + [tail])
    return f"{sign}₹{grouped}"


def rupee_to_number(price: str) -> float:
    digits = re.sub(r"[^\d.]", "", price or "")
    try:
        return float(digits)
    except ValueError:
        return 0


def clamp_qty(qty: int, stock: int) -> int:
    return max(1, min(qty, stock))


class CartSummary(BaseModel):
    subtotal: float
    discount: int = 0
    shipping: int = 0
    total: float
    coupon: Optional[str] = None
    coupon_applied: bool = False


def price_summary(subtotal: float, coupon: Optional[str] = None) -> CartSummary:
    code = (coupon or "").strip().upper() or None
    discount = round_half_up(subtotal * 0.10) if code == COUPON_DISCOUNT else 0
    free_shipping = code == COUPON_FREE_SHIPPING
    if free_shipping or subtotal == 0 or subtotal - discount >= FREE_SHIPPING_THRESHOLD:
        shipping = 0
    else:
        shipping = FLAT_SHIPPING
    return CartSummary(
        subtotal=subtotal,
        discount=discount,
        shipping=shipping,
        total=max(0, subtotal - discount) + shipping,
        coupon=code,
        coupon_applied=code in (COUPON_DISCOUNT, COUPON_FREE_SHIPPING),
    )


class Cart:
    def __init__(self, store: KeyValueStore, scope: Optional[str] = None):
        self.store = store
        self.key = scoped_key(CART_KEY, scope)
        self._items = RecordCollection(store, self.key, CartItem)

    def items(self) -> List[CartItem]:
        return self._items.all()

    def add(self, product: StoreProduct, qty: int = 1) -> CartItem:
        """Add qty of product, merging with an existing line. Quantity stays within [1, stock]."""
        if product.stock < 1:
            raise FormValidationError({"product": f"{product.name} is out of stock"})
        with self.store.batch():
            items = self.items()
            for item in items:
                if item.product.id == product.id:
                    item.product = product
                    item.qty = clamp_qty(item.qty + qty, product.stock)
                    break
            else:
                item = CartItem(product=product, qty=clamp_qty(qty, product.stock))
                items.append(item)
            self._items.replace_all(items)
        return item

    def update_qty(self, product_id: str, qty: int) -> Optional[CartItem]:
        with self.store.batch():
            items = self.items()
            for item in items:
                if item.product.id == product_id:
                    item.qty = clamp_qty(qty, item.product.stock)
                    self._items.replace_all(items)
                    return item
        return None

    def remove(self, product_id: str) -> None:
        with self.store.batch():
            self._items.replace_all([i for i in self.items() if i.product.id != product_id])

    def clear(self) -> None:
        self._items.clear()

    def subtotal(self) -> float:
        return sum(rupee_to_number(i.product.price) * i.qty for i in self.items())

    def summary(self, coupon: Optional[str] = None) -> CartSummary:
        return price_summary(self.subtotal(), coupon)


class Wishlist:
    def __init__(self, store: KeyValueStore, scope: Optional[str] = None):
        self.store = store
        self.key = scoped_key(WISHLIST_KEY, scope)
        self._products = RecordCollection(store, self.key, StoreProduct)

    def items(self) -> List[StoreProduct]:
        return self._products.all()

    def contains(self, product_id: str) -> bool:
        return any(p.id == product_id for p in self.items())

    def add(self, product: StoreProduct) -> bool:
        """Returns False when the product was already wishlisted."""
        with self.store.batch():
            if self.contains(product.id):
                return False
            self._products.append(product)
        return True

    def remove(self, product_id: str) -> None:
        self._products.delete(product_id)
