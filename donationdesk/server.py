from __future__ import annotations
import logging
import os
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Form, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from .auth import is_admin, login_session, logout_session, passwords
from .helpers import human_ts, parse_amount, to_iso, to_minor_units
from .infra.sql import make_async_engine
from .model.admins import AdminStore
from .model.ledger import DonationLedger, DonorFields
from .model.orm import Base
from .payments import (
    MockPay, PaymentAdapter, PaymentProviderError, RazorpayAdapter,
    new_receipt,
)

# ----------------------------
# Config & Constants
# ----------------------------
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL", None)

if DATABASE_URL is None:
    logger.error("NEED DATABASE_URL! e.g. sqlite:///./donations.db")
    sys.exit(1)

SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
SESSION_MAX_AGE = int(os.environ.get("SESSION_MAX_AGE", "3600"))

PAYMENT_BACKEND = os.environ.get("PAYMENT_BACKEND", "razorpay").lower()
RAZORPAY_KEY_ID = os.environ.get("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.environ.get("RAZORPAY_KEY_SECRET", "")
PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "INR")
PROVIDER_TIMEOUT = float(os.environ.get("PROVIDER_TIMEOUT", "5.0"))

SITE_NAME = os.environ.get("SITE_NAME", "Donation Desk")

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.filters["human_ts"] = human_ts
templates.env.filters["iso"] = to_iso
templates.env.globals["site_name"] = SITE_NAME

engine, SessionAsync = make_async_engine(DATABASE_URL)


def new_adapter(http: httpx.AsyncClient) -> PaymentAdapter:
    if PAYMENT_BACKEND == "mock":
        return MockPay(currency=PAYMENT_CURRENCY)
    if not (RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET):
        logger.warning("RAZORPAY_KEY_ID/RAZORPAY_KEY_SECRET not set; "
                       "online payments will fail")
    return RazorpayAdapter(
        http, RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET, currency=PAYMENT_CURRENCY
    )


# ---
# startup / shutdown
# ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("donationdesk starting: payments=%s database=%s",
                PAYMENT_BACKEND, engine.dialect.name)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.state.http = httpx.AsyncClient(timeout=PROVIDER_TIMEOUT)
    app.state.payments = new_adapter(app.state.http)
    try:
        yield
    finally:
        await app.state.http.aclose()
        await engine.dispose()


app = FastAPI(title="Donation Desk", lifespan=lifespan)
app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")),
          name="static")
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET,
                   max_age=SESSION_MAX_AGE)


@app.exception_handler(SQLAlchemyError)
async def _db_error(request: Request, exc: SQLAlchemyError):
    logger.exception("database error on %s %s", request.method,
                     request.url.path, exc_info=exc)
    return PlainTextResponse("Internal Server Error", status_code=500)


# ----------------------------
# Dependencies
# ----------------------------
async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


def donation_ledger(db: AsyncSession = Depends(get_db)) -> DonationLedger:
    return DonationLedger(db)


def admin_store(db: AsyncSession = Depends(get_db)) -> AdminStore:
    return AdminStore(db)


def payment_adapter(request: Request) -> PaymentAdapter:
    return request.app.state.payments


@dataclass
class DonorForm:
    donor: DonorFields
    # amountINR was sent but is not a number
    amount_invalid: bool = False


def donor_form(
    full_name: str = Form("", alias="fullName"),
    address: str = Form(""),
    mobile: str = Form(""),
    email: str = Form(""),
    amount_inr: Optional[str] = Form(None, alias="amountINR"),
    comment: str = Form(""),
) -> DonorForm:
    amount = parse_amount(amount_inr)
    return DonorForm(
        donor=DonorFields(
            full_name=full_name,
            address=address,
            mobile=mobile,
            email=email,
            amount_inr=amount,
            comment=comment,
        ),
        amount_invalid=amount is None and bool((amount_inr or "").strip()),
    )


def success_redirect(donation_id: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"/success?id={donation_id}", status_code=HTTP_303_SEE_OTHER
    )


# ----------------------------
# Public donation forms
# ----------------------------
@app.get("/", response_class=HTMLResponse)
async def online_page(request: Request):
    return templates.TemplateResponse(request, "online.html", {})


@app.get("/offline", response_class=HTMLResponse)
async def offline_page(request: Request):
    return templates.TemplateResponse(request, "offline.html", {})


@app.post("/offline")
async def offline_submit(
    form: DonorForm = Depends(donor_form),
    ledger: DonationLedger = Depends(donation_ledger),
):
    if form.amount_invalid:
        return PlainTextResponse("Invalid amount", status_code=400)
    try:
        donation = await ledger.record_offline(form.donor)
    except SQLAlchemyError:
        logger.exception("saving offline donation failed")
        return PlainTextResponse("Error saving data", status_code=500)
    logger.info("offline donation %s recorded", donation.id)
    return success_redirect(donation.id)


# ----------------------------
# Online payment: order -> checkout -> verification
# ----------------------------
@app.post("/pay", response_class=HTMLResponse)
async def pay(
    request: Request,
    form: DonorForm = Depends(donor_form),
    adapter: PaymentAdapter = Depends(payment_adapter),
):
    amount_inr = form.donor.amount_inr
    amount = to_minor_units(amount_inr) if amount_inr is not None else 0
    if form.amount_invalid or amount <= 0:
        return PlainTextResponse("Invalid amount", status_code=400)

    try:
        order = await adapter.create_order(amount, new_receipt())
    except PaymentProviderError:
        logger.exception("creating %s order failed", adapter.name)
        return PlainTextResponse("Error creating payment order",
                                 status_code=500)

    return templates.TemplateResponse(request, "checkout.html", {
        "provider": adapter.name,
        "key_id": order["key_id"],
        "order_id": order["order_id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "amount_inr": amount_inr,
        "donor": form.donor,
    })


@app.post("/payment-success")
async def payment_success(
    razorpay_order_id: Optional[str] = Form(None),
    razorpay_payment_id: Optional[str] = Form(None),
    razorpay_signature: Optional[str] = Form(None),
    form: DonorForm = Depends(donor_form),
    adapter: PaymentAdapter = Depends(payment_adapter),
    ledger: DonationLedger = Depends(donation_ledger),
):
    verified = adapter.verify_payment(
        razorpay_order_id, razorpay_payment_id, razorpay_signature
    )
    # amount and donor details are taken from the client, not the provider
    if not verified or form.amount_invalid or form.donor.amount_inr is None:
        logger.warning("payment verification failed for order %r",
                       razorpay_order_id)
        return PlainTextResponse("Payment verification failed",
                                 status_code=400)

    try:
        donation = await ledger.record_online(
            form.donor, razorpay_order_id, razorpay_payment_id
        )
    except IntegrityError:
        # replayed completion: the payment is already on the ledger
        existing = await ledger.find_by_payment_id(razorpay_payment_id)
        if existing is None:
            logger.exception("saving online donation for order %s failed",
                             razorpay_order_id)
            return PlainTextResponse("Error saving data", status_code=500)
        logger.info("payment %s already recorded as %s",
                    razorpay_payment_id, existing.id)
        return success_redirect(existing.id)
    except SQLAlchemyError:
        logger.exception("saving online donation for order %s failed",
                         razorpay_order_id)
        return PlainTextResponse("Error saving data", status_code=500)
    logger.info("online donation %s recorded (order %s, payment %s)",
                donation.id, razorpay_order_id, razorpay_payment_id)
    return success_redirect(donation.id)


# MockPay
@app.post("/mockpay/{order_id}", response_class=HTMLResponse)
async def mockpay_screen(
    request: Request,
    order_id: str,
    amount: int = Form(0),
    form: DonorForm = Depends(donor_form),
    adapter: PaymentAdapter = Depends(payment_adapter),
):
    if not isinstance(adapter, MockPay):
        return PlainTextResponse("Not Found", status_code=404)
    payment_id, signature = adapter.complete(order_id)
    return templates.TemplateResponse(request, "mockpay.html", {
        "order_id": order_id,
        "payment_id": payment_id,
        "signature": signature,
        "amount": amount,
        "currency": adapter.currency,
        "amount_inr": form.donor.amount_inr,
        "donor": form.donor,
    })


# ----------------------------
# Receipt & success pages
# ----------------------------
@app.get("/receipt/{donation_id}", response_class=HTMLResponse)
async def receipt(
    request: Request,
    donation_id: str,
    ledger: DonationLedger = Depends(donation_ledger),
):
    try:
        donation = await ledger.get(donation_id)
    except SQLAlchemyError:
        logger.exception("loading receipt %s failed", donation_id)
        return PlainTextResponse("Error generating receipt", status_code=500)
    if donation is None:
        return PlainTextResponse("Donation not found", status_code=404)
    return templates.TemplateResponse(
        request, "receipt.html", {"donation": donation}
    )


@app.get("/success", response_class=HTMLResponse)
async def success_page(
    request: Request,
    donation_id: Optional[str] = Query(None, alias="id"),
    ledger: DonationLedger = Depends(donation_ledger),
):
    try:
        donation = await ledger.get(donation_id)
    except SQLAlchemyError:
        logger.exception("loading success page for %s failed", donation_id)
        return PlainTextResponse("Error loading success page",
                                 status_code=500)
    return templates.TemplateResponse(
        request, "success.html", {"donation": donation}
    )


# ----------------------------
# Admin: signup, login, ledger
# ----------------------------
@app.get("/signup", response_class=HTMLResponse)
async def signup_page(request: Request):
    return templates.TemplateResponse(request, "signup.html", {"error": None})


@app.post("/signup", response_class=HTMLResponse)
async def signup_submit(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form("", alias="confirmPassword"),
    admins: AdminStore = Depends(admin_store),
):
    username = username.strip()
    error = None
    if not username:
        error = "Username is required"
    elif password != confirm_password:
        error = "Passwords do not match"
    if error:
        return templates.TemplateResponse(
            request, "signup.html", {"error": error, "username": username}
        )

    # duplicate usernames are accepted; login uses the oldest account
    password_hash = await run_in_threadpool(passwords.hash_password, password)
    user = await admins.create(username, password_hash)
    logger.info("admin account %s created for %r", user.id, username)
    return RedirectResponse(url="/login", status_code=HTTP_303_SEE_OTHER)


@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html", {"error": None})


@app.post("/login", response_class=HTMLResponse)
async def login_submit(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    admins: AdminStore = Depends(admin_store),
):
    username = username.strip()
    user = await admins.find_by_username(username)
    if user is None:
        error = "User not found"
    elif not await run_in_threadpool(
        passwords.verify_password, password, user.password_hash
    ):
        error = "Invalid credentials"
    else:
        login_session(request, user.id, user.username)
        return RedirectResponse(url="/admin", status_code=HTTP_303_SEE_OTHER)

    logger.info("failed admin login for %r: %s", username, error)
    return templates.TemplateResponse(
        request, "login.html", {"error": error, "username": username}
    )


@app.get("/logout")
async def logout(request: Request):
    logout_session(request)
    return RedirectResponse(url="/login", status_code=HTTP_303_SEE_OTHER)


@app.get("/admin", response_class=HTMLResponse)
async def admin_page(
    request: Request,
    ledger: DonationLedger = Depends(donation_ledger),
):
    if not is_admin(request):
        return RedirectResponse(url="/login", status_code=HTTP_303_SEE_OTHER)

    try:
        donations = await ledger.list_newest_first()
    except SQLAlchemyError:
        logger.exception("listing donations failed")
        return PlainTextResponse("Error fetching data", status_code=500)
    return templates.TemplateResponse(request, "admin.html", {
        "donations": donations,
        "admin_user": request.session.get("admin_user"),
    })


def main() -> None:
    import uvicorn
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "5000")),
    )
