"""
Order history and checkout.
"""
import logging
import re
from typing import List, Literal, Optional

from pydantic import BaseModel

from errors import FormValidationError
from ids import order_reference
from schemas import Order, OrderItem, ShippingAddress
from shop import Cart, rupee_to_number
from storage import KeyValueStore, RecordCollection, scoped_key

logger = logging.getLogger(__name__)

ORDERS_KEY = "rc_orders"
LEGACY_DEMO_ID = re.compile(r"^RC-100\d$")


class CheckoutDetails(BaseModel):
    full_name: str = ""
    phone: str = ""
    email: Optional[str] = None
    address1: str = ""
    address2: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    notes: str = ""
    payment_method: Literal["cod", "upi", "card"] = "cod"

    def missing_fields(self) -> List[str]:
        required = ("full_name", "phone", "address1", "city", "state", "pincode")
        return [name for name in required if not getattr(self, name).strip()]


class Orders:
    def __init__(self, store: KeyValueStore, scope: Optional[str] = None):
        self.store = store
        self.scope = scope
        self._records = RecordCollection(store, scoped_key(ORDERS_KEY, scope), Order)

    def all(self) -> List[Order]:
        return self.purge_legacy_demo()

    def get(self, order_id: str) -> Optional[Order]:
        return self._records.get(order_id)

    def purge_legacy_demo(self) -> List[Order]:
        """Drop the old RC-100x demo orders, but only when nothing else is stored."""
        with self.store.batch():
            orders = self._records.all()
            if orders and all(LEGACY_DEMO_ID.match(o.id) for o in orders):
                logger.info("Purging %d legacy demo orders", len(orders))
                self._records.clear()
                return []
        return orders

    def place(self, details: CheckoutDetails, coupon: Optional[str] = None) -> Order:
        """Turn the cart into a pending order and empty the cart, in one batch."""
        missing = details.missing_fields()
        if missing:
            raise FormValidationError({name: "This field is required" for name in missing})

        cart = Cart(self.store, self.scope)
        with self.store.batch():
            items = cart.items()
            if not items:
                raise FormValidationError({"cart": "Add items before checking out."})

            summary = cart.summary(coupon)
            address = ", ".join(p for p in (details.address1.strip(), details.address2.strip()) if p)
            order = Order(
                id=order_reference(),
                total=summary.total,
                items=[
                    OrderItem(
                        id=i.product.id,
                        title=i.product.name,
                        qty=i.qty,
                        price=rupee_to_number(i.product.price),
                        image=i.product.image or None,
                    )
                    for i in items
                ],
                shipping_to=ShippingAddress(
                    name=details.full_name.strip(),
                    address=f"{address} - {details.pincode.strip()}",
                    city=f"{details.city.strip()}, {details.state.strip()}",
                    phone=details.phone.strip(),
                ),
                payment_method=details.payment_method,
            )
            self._records.upsert(order)
            cart.clear()
        logger.info("Order %s placed, total %s", order.id, order.total)
        return order
