import logging
import os
import shutil
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, ValidationError

import config
from accounts import Accounts
from catalog_sync import ListingDraft, delete_listing, edit_listing, publish_listing, toggle_listing
from database import db, create_document
from errors import FormValidationError, MarketError, NotFoundError, ServiceabilityUnknown
from ids import upload_filename
from listings import Listings, ListingTab
from orders import CheckoutDetails, Orders
from pincode import build_checker, invalid_format, is_valid_pincode
from products import find_storefront_product, storefront
from schemas import Donation as DonationSchema, Product as ProductSchema
from shop import Cart, Wishlist
from storage import JsonFileBackend, KeyValueStore, MemoryBackend, MongoBackend

logger = logging.getLogger(__name__)

app = FastAPI(title="ReCraft Market API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(config.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR), name="uploads")


def _build_store() -> KeyValueStore:
    backend = config.STORE_BACKEND
    if backend == "auto":
        backend = "mongo" if db is not None else ("json" if config.STORE_PATH else "memory")
    if backend == "mongo":
        if db is None:
            raise RuntimeError("STORE_BACKEND=mongo needs DATABASE_URL and DATABASE_NAME")
        return KeyValueStore(MongoBackend(db["kvstore"]))
    if backend == "json":
        return KeyValueStore(JsonFileBackend(config.STORE_PATH or "data/store.json"))
    return KeyValueStore(MemoryBackend())


_store = _build_store()
_checker = build_checker(config.PINCODE_SERVICE_URL, config.SERVICEABLE_PREFIXES, config.PINCODE_TIMEOUT)
logger.info("Key-value store backend: %s", type(_store.backend).__name__)


def get_store() -> KeyValueStore:
    return _store


def get_checker():
    return _checker


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    body = {"detail": exc.message}
    if isinstance(exc, FormValidationError):
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=body)


# ========== UTILS ==========
def to_public(doc):
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def _object_id(value: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise HTTPException(400, "Invalid id")
    return ObjectId(value)


def _require_db():
    if db is None:
        raise HTTPException(500, "Database not configured")


def _form_bool(value: Optional[str]) -> bool:
    # checkboxes arrive as "true" or "on"
    return (value or "").strip().lower() in ("true", "on")


def _save_upload(upload: UploadFile) -> str:
    ext = os.path.splitext(upload.filename or "")[1]
    name = upload_filename(ext)
    with open(os.path.join(config.UPLOAD_DIR, name), "wb") as out:
        shutil.copyfileobj(upload.file, out)
    return f"/uploads/{name}"


@app.get("/")
def root():
    return {"status": "ok", "service": "ReCraft Market Backend"}


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/test")
def test_database():
    ok = db is not None
    response = {
        "backend": "✅ Running",
        "database": "✅ Connected" if ok else "❌ Not Connected",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": os.getenv("DATABASE_NAME") or "-",
        "store": type(_store.backend).__name__,
        "collections": [],
    }
    if ok:
        try:
            response["collections"] = list(db.list_collection_names())[:10]
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


# ========== PINCODE ==========
@app.get("/api/check-pincode")
def check_pincode(code: str = "", checker=Depends(get_checker)):
    code = code.strip()
    if not is_valid_pincode(code):
        return JSONResponse(status_code=400, content=invalid_format(code).model_dump(exclude_none=True))
    return checker.check(code).model_dump(exclude_none=True)


# ========== DONATIONS ==========
@app.post("/api/donations", status_code=201)
def create_donation(
    donor_name: Optional[str] = Form(None),
    material_type: Optional[str] = Form(None),
    materialType: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    pickup: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    pincode: Optional[str] = Form(None),
    contact: Optional[str] = Form(None),
    consent: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    checker=Depends(get_checker),
):
    _require_db()
    images = images or []
    if len(images) > config.MAX_DONATION_UPLOADS:
        raise HTTPException(400, f"At most {config.MAX_DONATION_UPLOADS} images per donation")

    pickup_flag = _form_bool(pickup)
    try:
        donation = DonationSchema(
            donor_name=donor_name or None,
            material_type=material_type or materialType or "",
            quantity=quantity or "",
            condition=condition,
            notes=notes,
            pickup=pickup_flag,
            address=address,
            pincode=pincode,
            contact=contact,
            consent=_form_bool(consent),
        )
    except ValidationError as e:
        raise FormValidationError.from_pydantic(e)

    if pickup_flag and pincode:
        try:
            result = checker.check(pincode)
            donation.pickup_serviceable = result.serviceable
            donation.region = result.region
        except ServiceabilityUnknown:
            logger.warning("Recording donation without serviceability for pincode %s", pincode)

    donation.images = [_save_upload(f) for f in images]
    donation_id = create_document("donation", donation)
    doc = db["donation"].find_one({"_id": ObjectId(donation_id)})
    return {"message": "Donation recorded", "donationId": donation_id, "donation": to_public(doc)}


@app.get("/api/donations")
def list_donations():
    _require_db()
    return [to_public(d) for d in db["donation"].find().sort("created_at", -1)]


@app.get("/api/donations/{donation_id}")
def get_donation(donation_id: str):
    _require_db()
    doc = db["donation"].find_one({"_id": _object_id(donation_id)})
    if not doc:
        raise NotFoundError("Donation not found")
    return to_public(doc)


# ========== PRODUCTS (artisan catalog) ==========
@app.post("/api/products", status_code=201)
def create_product(
    title: str = Form(...),
    price: float = Form(...),
    artisan: str = Form(...),
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    _require_db()
    try:
        product = ProductSchema(title=title, description=description, price=price, artisan=artisan)
    except ValidationError as e:
        raise FormValidationError.from_pydantic(e)
    if image is not None and image.filename:
        product.image = _save_upload(image)
    product_id = create_document("product", product)
    return to_public(db["product"].find_one({"_id": ObjectId(product_id)}))


@app.get("/api/products")
def list_products():
    _require_db()
    return [to_public(p) for p in db["product"].find()]


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    _require_db()
    doc = db["product"].find_one({"_id": _object_id(product_id)})
    if not doc:
        raise NotFoundError("Product not found")
    return to_public(doc)


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    title: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    artisan: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    _require_db()
    oid = _object_id(product_id)
    existing = db["product"].find_one({"_id": oid})
    if not existing:
        raise NotFoundError("Product not found")

    data = {k: v for k, v in {"title": title, "price": price, "artisan": artisan, "description": description}.items() if v is not None}
    merged = {k: existing.get(k) for k in ProductSchema.model_fields}
    merged.update(data)
    try:
        ProductSchema.model_validate(merged)
    except ValidationError as e:
        raise FormValidationError.from_pydantic(e)
    if image is not None and image.filename:
        data["image"] = _save_upload(image)

    if data:
        db["product"].update_one({"_id": oid}, {"$set": data})
    return to_public(db["product"].find_one({"_id": oid}))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str):
    _require_db()
    result = db["product"].delete_one({"_id": _object_id(product_id)})
    if result.deleted_count == 0:
        raise NotFoundError("Product not found")
    return {"message": "Product deleted"}


# ========== USERS ==========
class RegisterPayload(BaseModel):
    name: str
    email: EmailStr
    password: str
    location: Optional[str] = None


class LoginPayload(BaseModel):
    email: str
    password: str


@app.post("/api/users/register", status_code=201)
def register(body: RegisterPayload, store: KeyValueStore = Depends(get_store)):
    user = Accounts(store).register(body.name, body.email, body.password, body.location)
    return user.public()


@app.post("/api/users/login")
def login(body: LoginPayload, store: KeyValueStore = Depends(get_store)):
    return Accounts(store).authenticate(body.email, body.password).public()


# ========== LISTINGS ==========
class ActivePayload(BaseModel):
    active: bool


@app.get("/api/listings")
def list_listings(seller_id: str, q: Optional[str] = None, tab: ListingTab = "all",
                  store: KeyValueStore = Depends(get_store)):
    return {"items": Listings(store, seller_id).search(q, tab)}


@app.post("/api/listings", status_code=201)
def create_listing(body: ListingDraft, seller_id: str, store: KeyValueStore = Depends(get_store)):
    listing, product = publish_listing(store, body, seller_id)
    return {"listing": listing, "product": product}


@app.put("/api/listings/{listing_id}")
def update_listing(listing_id: str, body: ListingDraft, seller_id: str, store: KeyValueStore = Depends(get_store)):
    return edit_listing(store, listing_id, body, seller_id)


@app.patch("/api/listings/{listing_id}/active")
def set_listing_active(listing_id: str, body: ActivePayload, seller_id: str, store: KeyValueStore = Depends(get_store)):
    return toggle_listing(store, listing_id, body.active, seller_id)


@app.delete("/api/listings/{listing_id}")
def remove_listing(listing_id: str, seller_id: str, store: KeyValueStore = Depends(get_store)):
    removed = delete_listing(store, listing_id, seller_id)
    return {"message": "Listing deleted", "removed_products": removed}


@app.get("/api/storefront")
def list_storefront(store: KeyValueStore = Depends(get_store)):
    return {"items": storefront(store)}


# ========== CART ==========
class CartItemPayload(BaseModel):
    user_id: str
    product_id: str
    qty: int = 1


class QtyPayload(BaseModel):
    qty: int


@app.get("/api/cart")
def get_cart(user_id: str, store: KeyValueStore = Depends(get_store)):
    cart = Cart(store, user_id)
    return {"items": cart.items(), "summary": cart.summary()}


@app.get("/api/cart/summary")
def get_cart_summary(user_id: str, coupon: Optional[str] = None, store: KeyValueStore = Depends(get_store)):
    return Cart(store, user_id).summary(coupon)


@app.post("/api/cart")
def add_to_cart(body: CartItemPayload, store: KeyValueStore = Depends(get_store)):
    product = find_storefront_product(store, body.product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return Cart(store, body.user_id).add(product, body.qty)


@app.patch("/api/cart/{product_id}")
def update_cart_qty(product_id: str, body: QtyPayload, user_id: str, store: KeyValueStore = Depends(get_store)):
    item = Cart(store, user_id).update_qty(product_id, body.qty)
    if item is None:
        raise NotFoundError("Item not in cart")
    return item


@app.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, user_id: str, store: KeyValueStore = Depends(get_store)):
    Cart(store, user_id).remove(product_id)
    return {"ok": True}


@app.delete("/api/cart")
def clear_cart(user_id: str, store: KeyValueStore = Depends(get_store)):
    Cart(store, user_id).clear()
    return {"ok": True}


# ========== WISHLIST ==========
class WishlistPayload(BaseModel):
    user_id: str
    product_id: str


@app.get("/api/wishlist")
def get_wishlist(user_id: str, store: KeyValueStore = Depends(get_store)):
    return {"items": Wishlist(store, user_id).items()}


@app.post("/api/wishlist")
def add_wishlist(body: WishlistPayload, store: KeyValueStore = Depends(get_store)):
    product = find_storefront_product(store, body.product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return {"added": Wishlist(store, body.user_id).add(product)}


@app.delete("/api/wishlist/{product_id}")
def remove_wishlist(product_id: str, user_id: str, store: KeyValueStore = Depends(get_store)):
    Wishlist(store, user_id).remove(product_id)
    return {"ok": True}


# ========== ORDERS ==========
class CheckoutPayload(CheckoutDetails):
    coupon: Optional[str] = None


@app.get("/api/orders")
def list_orders(user_id: str, store: KeyValueStore = Depends(get_store)):
    return {"items": Orders(store, user_id).all()}


@app.post("/api/orders", status_code=201)
def create_order(body: CheckoutPayload, user_id: str, store: KeyValueStore = Depends(get_store)):
    details = CheckoutDetails(**body.model_dump(exclude={"coupon"}))
    return Orders(store, user_id).place(details, body.coupon)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
