import logging
import os
import random
import string
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Form, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.errors import PyMongoError

import config
import database
import notifications
from auth import (
    PageRedirect,
    create_access_token,
    get_password_hash,
    require_page,
    require_role,
    strip_private,
    verify_password,
)
from cart import cart_total, line_amount
from database import (
    count_documents,
    create_document,
    delete_document,
    delete_documents,
    find_document,
    get_document_by_id,
    get_documents,
    update_document,
    upsert_document,
    utcnow,
)
from lifecycle import ASSIGNMENTS, ORDER_FLOW, TransitionError, accept_job, advance_order, cancel_order
from recovery import build_recovery_url, build_unsubscribe_url, generate_recovery_token, verify_unsubscribe_signature
from schemas import (
    USER_ROLES,
    Address,
    BookingStep,
    Order,
    OrderItem,
    OrderStatus,
    PickupSlot,
    SavedCart,
    SavedCartItem,
    Service,
    TailorProfile,
    User,
    CartReminder,
    validate_phone,
)

logger = logging.getLogger("tailorspace.api")

app = FastAPI(title="TailorSpace Alterations API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PageRedirect)
def page_redirect_handler(request: Request, exc: PageRedirect):
    return RedirectResponse(exc.location, status_code=303)


@app.exception_handler(PyMongoError)
def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ============ Request / response models ==========
class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=2)
    phone: str

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        return validate_phone(v)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: str


class ServiceUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    base_price: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None
    estimated_days: Optional[int] = Field(None, ge=0)
    active: Optional[bool] = None
    popular: Optional[bool] = None
    sort_order: Optional[int] = None


class RoleUpdate(BaseModel):
    role: str


class SuspendUpdate(BaseModel):
    active: bool


class CheckoutItem(BaseModel):
    service_id: str
    garment_description: str = Field(..., min_length=5)
    quantity: int = Field(1, ge=1)
    photos: List[str] = []
    notes: Optional[str] = None


class CheckoutRequest(BaseModel):
    items: List[CheckoutItem] = Field(..., min_length=1)
    address: Address
    phone: str
    notes: Optional[str] = None
    pickup_date: str = Field(..., min_length=1)
    pickup_slot: PickupSlot

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: str) -> str:
        return validate_phone(v)


class StatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    notes: Optional[str] = None


class CartSyncRequest(BaseModel):
    items: List[SavedCartItem] = []
    booking_step: BookingStep = "services"
    pickup_date: Optional[str] = None
    pickup_slot: Optional[PickupSlot] = None


class TailorSettingsUpdate(BaseModel):
    business_name: Optional[str] = None
    specializations: List[str] = []
    weekly_capacity: int = Field(20, ge=0)
    turnaround_days: int = Field(5, ge=1)


# ===================== Public Endpoints =====================
@app.get("/")
def root():
    return {"message": "TailorSpace Alterations API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


# ===================== Auth =====================
@app.post("/api/auth/signup", response_model=Token)
def signup(payload: SignupRequest, background_tasks: BackgroundTasks):
    if find_document("users", {"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        email=payload.email,
        password_hash=get_password_hash(payload.password),
        full_name=payload.full_name,
        phone=payload.phone,
    )
    user_id = create_document("users", user)
    logger.info("Created customer account %s", user_id)
    background_tasks.add_task(notifications.send_welcome, user.email, user.full_name)
    return Token(access_token=create_access_token(user_id), user_id=user_id, role=user.role)


@app.post("/api/auth/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends()):
    user = find_document("users", {"email": form_data.username})
    if not user or not verify_password(form_data.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("active", True):
        raise HTTPException(status_code=403, detail="Account suspended")
    return Token(access_token=create_access_token(user["_id"]), user_id=user["_id"], role=user["role"])


@app.get("/api/auth/me")
def me(user: dict = Depends(require_role())):
    return strip_private(user)


# ===================== Services =====================
@app.get("/api/services")
def list_services():
    return get_documents("services", {"active": True}, sort=[("sort_order", 1), ("name", 1)])


@app.post("/api/admin/services")
def create_service(payload: Service, admin: dict = Depends(require_role("admin"))):
    service_id = create_document("services", payload)
    return {"_id": service_id}


@app.patch("/api/admin/services/{service_id}")
def update_service(service_id: str, payload: ServiceUpdate, admin: dict = Depends(require_role("admin"))):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(400, "No fields to update")
    if not update_document("services", service_id, changes):
        raise HTTPException(404, "Service not found")
    return get_document_by_id("services", service_id)


@app.delete("/api/admin/services/{service_id}")
def delete_service(service_id: str, admin: dict = Depends(require_role("admin"))):
    if not get_document_by_id("services", service_id):
        raise HTTPException(404, "Service not found")
    used = count_documents("orders", {"items.service_id": service_id})
    if used:
        raise HTTPException(400, f"Cannot delete service. It has {used} order(s) associated with it.")
    if not delete_document("services", service_id):
        raise HTTPException(404, "Service not found")
    return {"deleted": True}


# ===================== Admin: users =====================
@app.get("/api/admin/users")
def list_users(role: Optional[str] = None, admin: dict = Depends(require_role("admin"))):
    filt = {"role": role} if role else {}
    return [strip_private(u) for u in get_documents("users", filt, sort=[("created_at", -1)])]


@app.patch("/api/admin/users/{user_id}/role")
def update_user_role(user_id: str, payload: RoleUpdate, admin: dict = Depends(require_role("admin"))):
    if payload.role not in USER_ROLES:
        raise HTTPException(400, "Invalid role")
    if user_id == admin["_id"]:
        raise HTTPException(400, "Cannot change your own role")
    if not update_document("users", user_id, {"role": payload.role}):
        raise HTTPException(404, "User not found")
    logger.info("Admin %s set role of %s to %s", admin["_id"], user_id, payload.role)
    return strip_private(get_document_by_id("users", user_id))


@app.patch("/api/admin/users/{user_id}/suspend")
def suspend_user(user_id: str, payload: SuspendUpdate, admin: dict = Depends(require_role("admin"))):
    if user_id == admin["_id"]:
        raise HTTPException(400, "Cannot suspend your own account")
    if not update_document("users", user_id, {"active": payload.active}):
        raise HTTPException(404, "User not found")
    logger.info("Admin %s set active=%s on %s", admin["_id"], payload.active, user_id)
    return strip_private(get_document_by_id("users", user_id))


# ===================== Orders =====================
def _order_number() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"TS-{datetime.now(timezone.utc).strftime('%y%m%d')}-{suffix}"


def _can_view(order: dict, user: dict) -> bool:
    if user["role"] == "admin":
        return True
    return user["_id"] in (order.get("customer_id"), order.get("runner_id"), order.get("tailor_id"))


def _notify_status(background_tasks: BackgroundTasks, order_id: str) -> None:
    order = get_document_by_id("orders", order_id)
    customer = get_document_by_id("users", order["customer_id"]) if order else None
    if not customer:
        return
    background_tasks.add_task(
        notifications.send_status_update,
        customer["email"], customer["full_name"], order["order_number"], order["status"],
    )


@app.post("/api/orders")
def create_order(payload: CheckoutRequest, background_tasks: BackgroundTasks, user: dict = Depends(require_role())):
    items: List[OrderItem] = []
    for line in payload.items:
        service = get_document_by_id("services", line.service_id)
        if not service or not service.get("active", True):
            raise HTTPException(400, f"Unknown service {line.service_id}")
        items.append(OrderItem(
            service_id=service["_id"],
            service_name=service["name"],
            garment_description=line.garment_description,
            quantity=line.quantity,
            price=service["base_price"],
            photos=line.photos,
            notes=line.notes or None,
        ))
    subtotal = sum(line_amount(i.price, i.quantity) for i in items)
    total = cart_total(subtotal, len(items))
    order = Order(
        order_number=_order_number(),
        customer_id=user["_id"],
        items=items,
        subtotal=subtotal,
        delivery_fee=total - subtotal,
        total=total,
        customer_address=payload.address,
        customer_phone=payload.phone,
        customer_notes=payload.notes,
        pickup_date=payload.pickup_date,
        pickup_slot=payload.pickup_slot,
    )
    order_id = create_document("orders", order)
    logger.info("Order %s (%s) created for %s", order_id, order.order_number, user["_id"])
    delete_documents("saved_carts", {"user_id": user["_id"]})
    background_tasks.add_task(
        notifications.send_order_confirmation,
        user["email"], user["full_name"], order.order_number, total, len(items),
        payload.pickup_date, payload.pickup_slot,
    )
    return {"_id": order_id, "order_number": order.order_number, "total": total}


@app.get("/api/orders")
def list_my_orders(user: dict = Depends(require_role())):
    return get_documents("orders", {"customer_id": user["_id"]}, sort=[("created_at", -1)])


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(require_role())):
    order = get_document_by_id("orders", order_id)
    if not order or not _can_view(order, user):
        raise HTTPException(404, "Order not found")
    order["timeline"] = get_documents("order_timeline", {"order_id": order_id}, sort=[("created_at", 1)])
    return order


@app.post("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdate, background_tasks: BackgroundTasks,
                        user: dict = Depends(require_role("runner", "tailor", "admin"))):
    if not get_document_by_id("orders", order_id):
        raise HTTPException(404, "Order not found")
    try:
        ok = advance_order(order_id, payload.status, user, payload.notes)
    except TransitionError as e:
        raise HTTPException(400, str(e))
    if not ok:
        raise HTTPException(400, "Failed to update order status")
    _notify_status(background_tasks, order_id)
    return get_document_by_id("orders", order_id)


@app.get("/api/admin/orders")
def admin_list_orders(status: Optional[OrderStatus] = None, admin: dict = Depends(require_role("admin"))):
    filt = {"status": status} if status else {}
    return get_documents("orders", filt, sort=[("created_at", -1)])


@app.post("/api/admin/orders/{order_id}/cancel")
def admin_cancel_order(order_id: str, background_tasks: BackgroundTasks, payload: Optional[CancelRequest] = None,
                       admin: dict = Depends(require_role("admin"))):
    if not get_document_by_id("orders", order_id):
        raise HTTPException(404, "Order not found")
    if not cancel_order(order_id, admin, payload.notes if payload else None):
        raise HTTPException(400, "Failed to cancel order")
    _notify_status(background_tasks, order_id)
    return get_document_by_id("orders", order_id)


# ===================== Staff jobs =====================
def _job_board(user: dict) -> Dict[str, list]:
    field, required, _ = ASSIGNMENTS[user["role"]]
    return {
        "available": get_documents("orders", {field: None, "status": required}, sort=[("pickup_date", 1)]),
        "assigned": get_documents(
            "orders",
            {field: user["_id"], "status": {"$nin": ["completed", "cancelled"]}},
            sort=[("updated_at", -1)],
        ),
    }


def _accept(order_id: str, user: dict, background_tasks: BackgroundTasks):
    if not accept_job(order_id, user):
        raise HTTPException(400, "Failed to accept job")
    _notify_status(background_tasks, order_id)
    return RedirectResponse(f"/{user['role']}/orders/{order_id}", status_code=303)


@app.get("/api/runner/jobs")
def runner_jobs(user: dict = Depends(require_role("runner"))):
    return _job_board(user)


@app.post("/api/runner/accept")
def runner_accept(background_tasks: BackgroundTasks, order_id: str = Form(...), user: dict = Depends(require_role("runner"))):
    return _accept(order_id, user, background_tasks)


@app.get("/api/tailor/jobs")
def tailor_jobs(user: dict = Depends(require_role("tailor"))):
    return _job_board(user)


@app.post("/api/tailor/accept")
def tailor_accept(background_tasks: BackgroundTasks, order_id: str = Form(...), user: dict = Depends(require_role("tailor"))):
    return _accept(order_id, user, background_tasks)


@app.get("/api/tailor/settings")
def get_tailor_settings(user: dict = Depends(require_role("tailor"))):
    return find_document("tailor_profiles", {"user_id": user["_id"]}) or TailorProfile(user_id=user["_id"]).model_dump()


@app.put("/api/tailor/settings")
def update_tailor_settings(payload: TailorSettingsUpdate, user: dict = Depends(require_role("tailor"))):
    return upsert_document("tailor_profiles", {"user_id": user["_id"]}, {"user_id": user["_id"], **payload.model_dump()})


# ===================== Preferences =====================
@app.get("/api/settings/email-preferences")
def get_email_preferences(user: dict = Depends(require_role())):
    return user.get("email_preferences") or {}


@app.patch("/api/settings/email-preferences")
def update_email_preferences(payload: Dict[str, bool], user: dict = Depends(require_role())):
    if any("." in key or key.startswith("$") for key in payload):
        raise HTTPException(400, "Invalid preference name")
    if payload:
        # One dotted $set per key, so flags not in the request keep their stored value.
        update_document("users", user["_id"], {f"email_preferences.{key}": value for key, value in payload.items()})
    return get_document_by_id("users", user["_id"]).get("email_preferences") or {}


@app.get("/api/unsubscribe")
def unsubscribe(uid: Optional[str] = None, sig: Optional[str] = None):
    if not verify_unsubscribe_signature(uid, sig):
        logger.warning("Rejected unsubscribe request for %s", uid)
        return RedirectResponse("/unsubscribe/error", status_code=303)
    # Only the one flag is touched; the rest of the map is left as stored.
    if not update_document("users", uid, {"email_preferences.cart_reminders": False}):
        return RedirectResponse("/unsubscribe/error", status_code=303)
    logger.info("User %s unsubscribed from cart reminders", uid)
    return RedirectResponse("/unsubscribe/success", status_code=303)


# ===================== Cart sync & recovery =====================
BOOKING_STEP_ROUTES = {
    "services": "/book",
    "items": "/book/items",
    "schedule": "/book/schedule",
    "checkout": "/book/checkout",
}


@app.post("/api/cart/sync")
def sync_cart(payload: CartSyncRequest, user: dict = Depends(require_role())):
    saved = SavedCart(user_id=user["_id"], last_active_at=utcnow(), **payload.model_dump())
    return {"success": True, "data": upsert_document("saved_carts", {"user_id": user["_id"]}, saved)}


@app.get("/api/cart/sync")
def get_saved_cart(user: dict = Depends(require_role())):
    return {"data": find_document("saved_carts", {"user_id": user["_id"]})}


@app.delete("/api/cart/sync")
def delete_saved_cart(user: dict = Depends(require_role())):
    delete_documents("saved_carts", {"user_id": user["_id"]})
    return {"success": True}


@app.get("/api/recover")
def recover_cart(token: str):
    reminder = find_document("cart_reminders", {"recovery_token": token})
    if not reminder:
        raise HTTPException(404, "Recovery link not found")
    cart = find_document("saved_carts", {"user_id": reminder["user_id"]})
    if not cart or not cart.get("items"):
        raise HTTPException(404, "Saved cart is empty")
    return {
        "items": cart["items"],
        "booking_step": cart.get("booking_step", "services"),
        "resume_at": BOOKING_STEP_ROUTES.get(cart.get("booking_step"), "/book"),
        "pickup_date": cart.get("pickup_date"),
        "pickup_slot": cart.get("pickup_slot"),
    }


MAX_EMAILS_PER_RUN = 50
SAVED_CART_RETENTION = timedelta(days=30)
REMINDER_THRESHOLDS = (
    (3, timedelta(hours=72)),
    (2, timedelta(hours=24)),
    (1, timedelta(hours=1)),
)


def reminder_sequence(idle: timedelta) -> Optional[int]:
    for sequence, threshold in REMINDER_THRESHOLDS:
        if idle >= threshold:
            return sequence
    return None


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes that are already UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def clean_stale_carts(now: datetime) -> int:
    stale = {"last_active_at": {"$lt": now - SAVED_CART_RETENTION}}
    stale_ids = [c["_id"] for c in get_documents("saved_carts", stale)]
    if not stale_ids:
        return 0
    delete_documents("cart_reminders", {"cart_id": {"$in": stale_ids}})
    return delete_documents("saved_carts", stale)


@app.get("/api/cron/abandoned-cart")
def abandoned_cart_job(authorization: Optional[str] = Header(None)):
    if not config.CRON_SECRET or authorization != f"Bearer {config.CRON_SECRET}":
        raise HTTPException(401, "Unauthorized")
    now = utcnow()
    results = {"sent": 0, "skipped": 0, "cleaned": clean_stale_carts(now), "errors": []}
    carts = get_documents("saved_carts", {"items": {"$ne": []}}, sort=[("last_active_at", 1)])
    for cart in carts:
        if results["sent"] >= MAX_EMAILS_PER_RUN:
            break
        last_active = cart.get("last_active_at")
        if not last_active:
            continue
        target = reminder_sequence(now - _as_utc(last_active))
        if target is None:
            continue
        user = get_document_by_id("users", cart["user_id"])
        if not user or not user.get("active", True):
            continue
        if not (user.get("email_preferences") or {}).get("cart_reminders", True):
            results["skipped"] += 1
            continue
        already = {r["sequence_number"] for r in get_documents("cart_reminders", {"cart_id": cart["_id"]})}
        subtotal = sum(line_amount(i["service_price"], i["quantity"]) for i in cart["items"])
        # Catch up on every step the cart has passed, oldest first.
        for sequence in range(1, target + 1):
            if sequence in already:
                continue
            if results["sent"] >= MAX_EMAILS_PER_RUN:
                break
            token = generate_recovery_token()
            delivered = notifications.send_cart_reminder(
                user["email"], user["full_name"], cart["items"], subtotal,
                build_recovery_url(token), build_unsubscribe_url(user["_id"]), sequence,
            )
            if not delivered:
                results["errors"].append(f"Cart reminder #{sequence} failed for user {user['_id']}")
                break
            create_document("cart_reminders", CartReminder(
                user_id=user["_id"], cart_id=cart["_id"], sequence_number=sequence, recovery_token=token,
            ))
            results["sent"] += 1
    logger.info("Abandoned cart run: %s sent, %s opted out, %s cleaned, %s failed",
                results["sent"], results["skipped"], results["cleaned"], len(results["errors"]))
    return results


# ===================== Pages =====================
@app.get("/orders")
def orders_page(user: dict = Depends(require_page())):
    return {"user": strip_private(user), "orders": list_my_orders(user)}


@app.get("/orders/{order_id}")
def order_page(order_id: str, user: dict = Depends(require_page())):
    return {"user": strip_private(user), "order": get_order(order_id, user)}


@app.get("/runner")
def runner_page(user: dict = Depends(require_page("runner"))):
    return {"user": strip_private(user), **_job_board(user)}


@app.get("/runner/orders/{order_id}")
def runner_order_page(order_id: str, user: dict = Depends(require_page("runner"))):
    return {"user": strip_private(user), "order": get_order(order_id, user)}


@app.get("/tailor")
def tailor_page(user: dict = Depends(require_page("tailor"))):
    return {"user": strip_private(user), **_job_board(user)}


@app.get("/tailor/orders/{order_id}")
def tailor_order_page(order_id: str, user: dict = Depends(require_page("tailor"))):
    return {"user": strip_private(user), "order": get_order(order_id, user)}


@app.get("/admin")
def admin_page(user: dict = Depends(require_page("admin"))):
    counts = {}
    for status in ORDER_FLOW + ("cancelled",):
        counts[status] = count_documents("orders", {"status": status})
    return {
        "user": strip_private(user),
        "orders_by_status": counts,
        "users": count_documents("users"),
        "services": count_documents("services", {"active": True}),
    }


@app.get("/settings")
def settings_page(user: dict = Depends(require_page())):
    return {"user": strip_private(user), "email_preferences": user.get("email_preferences") or {}}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
