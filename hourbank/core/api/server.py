"""hourbank HTTP API server (FastAPI + uvicorn)."""

from __future__ import annotations

import datetime
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from hourbank import __version__
from hourbank.core.api.errors import (
    generic_exception_handler,
    hourbank_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from hourbank.core.api.middleware import RequestIDMiddleware
from hourbank.core.api.models import (
    BatchListResponse,
    BookingEstimateRequest,
    BookingEstimateResponse,
    CreditBalanceResponse,
    HealthResponse,
    IntentResponse,
    PackageListResponse,
    PackageResponse,
    PriceBreakdownResponse,
    PriceRequest,
    PurchaseRequest,
    PurchaseResponse,
    RedeemRequest,
    RedemptionResponse,
    ReloadPricingRequest,
    ReloadPricingResponse,
    SweepResponse,
    WebhookResponse,
)
from hourbank.core.api.settings import (
    Settings,
    check_persistence,
    load_settings,
    validate_host,
)
from hourbank.core.checkout.intents import intent_store
from hourbank.core.checkout.orchestrator import IN_FLIGHT, CheckoutOrchestrator
from hourbank.core.checkout.payments import StripeConfig, build_payment_client
from hourbank.core.credits.ledger import credit_ledger
from hourbank.core.errors import HourbankError, InvalidPurchaseError
from hourbank.core.pricing.catalog import PricingEngine
from hourbank.core.pricing.models import PriceBreakdown
from hourbank.core.pricing.rates import load_pricing_config, pricing_config_from_dict

logger = logging.getLogger("hourbank.api")


def _characteristics(model: Any) -> Optional[Dict[str, Any]]:
    return model.model_dump() if model is not None else None


def create_app(
    settings: Optional[Settings] = None,
    payment_client: Any = None,
) -> FastAPI:
    """Create and return the FastAPI application."""
    if settings is None:
        settings = load_settings()
    check_persistence(settings)

    docs_url = "/docs" if settings.enable_docs else None
    openapi_url = "/openapi.json" if settings.enable_docs else None

    app = FastAPI(
        title="hourbank API",
        description="Hour-package pricing and prepaid-hour credits.",
        version=__version__,
        docs_url=docs_url,
        openapi_url=openapi_url,
        redoc_url=None,
    )

    app.state.settings = settings

    # ── Normalized error envelope (always-on) ────────────────────
    app.add_exception_handler(HourbankError, hourbank_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # ── Middleware ────────────────────────────────────────────────
    app.add_middleware(RequestIDMiddleware, log_format=settings.log_format)

    # ── Reset singletons for test isolation ──────────────────────
    credit_ledger.reset()
    intent_store.reset()
    credit_ledger.configure(max_retries=settings.max_redeem_retries)

    # ── Persistence ──────────────────────────────────────────────
    if settings.ledger_persist:
        credit_ledger.configure_persistence(
            str(Path(settings.data_dir) / "hourbank_ledger.jsonl")
        )
    if settings.intents_persist:
        intent_store.configure_persistence(
            str(Path(settings.data_dir) / "hourbank_intents.jsonl")
        )

    pricing = PricingEngine(load_pricing_config(settings.pricing_config_path or None))
    if payment_client is None:
        payment_client = build_payment_client(
            StripeConfig.from_env() if settings.stripe_enabled else StripeConfig()
        )
    orchestrator = CheckoutOrchestrator(
        pricing,
        credit_ledger,
        payment_client,
        intent_store,
        payment_timeout=settings.payment_timeout_seconds,
        quote_ttl=settings.quote_ttl_seconds,
    )

    app.state.pricing = pricing
    app.state.ledger = credit_ledger
    app.state.intents = intent_store
    app.state.payments = payment_client
    app.state.orchestrator = orchestrator

    def _require_admin(request: Request) -> None:
        if not settings.admin_key:
            return
        if request.headers.get("x-admin-key", "") != settings.admin_key:
            raise HTTPException(status_code=403, detail="Admin key required.")

    # ── Health ───────────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "time": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "pricing_version": pricing.snapshot.config.version,
        }

    # ── Packages & pricing ───────────────────────────────────────

    @app.get("/v1/packages", response_model=PackageListResponse)
    def list_packages() -> Dict[str, Any]:
        snapshot = pricing.snapshot
        packages = snapshot.catalog.list_packages()
        return {
            "packages": [p.to_dict() for p in packages],
            "total": len(packages),
            "config_version": snapshot.config.version,
        }

    @app.get("/v1/packages/suggest", response_model=PackageResponse)
    def suggest_package(
        hours_needed: float = Query(..., description="Hours the customer expects to need."),
    ) -> Dict[str, Any]:
        return pricing.suggest_package(hours_needed).to_dict()

    @app.post("/v1/price", response_model=PriceBreakdownResponse)
    def price(req: PriceRequest) -> Dict[str, Any]:
        return pricing.compute_price(req.hours, _characteristics(req.characteristics)).to_dict()

    @app.post("/v1/booking-estimate", response_model=BookingEstimateResponse)
    def booking_estimate(req: BookingEstimateRequest) -> Dict[str, Any]:
        available = (
            credit_ledger.get_balance(req.customer_id).available_hours
            if req.customer_id
            else Decimal("0")
        )
        return pricing.estimate_booking(
            req.hours,
            _characteristics(req.characteristics),
            available_hours=available,
            use_credit=req.use_credit,
        ).to_dict()

    # ── Credits ──────────────────────────────────────────────────

    @app.get("/v1/credits/{customer_id}", response_model=CreditBalanceResponse)
    def get_balance(customer_id: str) -> Dict[str, Any]:
        return credit_ledger.get_balance(customer_id).to_dict()

    @app.get("/v1/credits/{customer_id}/batches", response_model=BatchListResponse)
    def list_batches(
        customer_id: str,
        include_archived: bool = Query(True),
    ) -> Dict[str, Any]:
        batches = credit_ledger.list_batches(customer_id, include_archived=include_archived)
        return {"customer_id": customer_id, "batches": batches, "total": len(batches)}

    @app.post("/v1/credits/{customer_id}/redeem", response_model=RedemptionResponse)
    def redeem(customer_id: str, req: RedeemRequest) -> Dict[str, Any]:
        return credit_ledger.redeem(customer_id, req.hours).to_dict()

    # ── Purchases ────────────────────────────────────────────────

    @app.post("/v1/purchases", response_model=PurchaseResponse)
    def purchase(req: PurchaseRequest) -> Any:
        quote = None
        if req.quote is not None:
            try:
                quote = PriceBreakdown.from_dict(req.quote)
            except (KeyError, TypeError, ArithmeticError, ValueError) as e:
                raise InvalidPurchaseError(f"Malformed quote: {e}")

        if req.wait:
            receipt = orchestrator.purchase_package(
                req.customer_id,
                req.hours,
                req.payment_method,
                req.intent_token,
                quote=quote,
                timeout=req.timeout_seconds,
            )
            return receipt.to_dict()

        intent = orchestrator.begin_purchase(
            req.customer_id, req.hours, req.payment_method, req.intent_token, quote=quote,
        )
        if intent.status in IN_FLIGHT:
            return JSONResponse(status_code=202, content=intent.to_dict())
        return orchestrator.receipt_for(intent).to_dict()

    @app.get("/v1/purchases/{token}", response_model=IntentResponse)
    def get_purchase(token: str) -> Dict[str, Any]:
        intent = orchestrator.get_intent(token)
        if intent is None:
            raise HTTPException(status_code=404, detail=f"Purchase intent '{token}' not found.")
        return intent.to_dict()

    @app.post("/v1/payments/webhook", response_model=WebhookResponse)
    async def payments_webhook(request: Request) -> Any:
        """Receive payment confirmations from the gateway."""
        signature = request.headers.get("stripe-signature", "")
        payload = await request.body()

        try:
            event = payment_client.parse_event(payload, signature)
        except Exception as e:
            logger.warning("webhook_invalid_signature: %s", str(e))
            raise HTTPException(status_code=400, detail="Invalid signature")

        if event is None:
            logger.info("webhook_unhandled_event")
            return {"received": True, "handled": False}

        intent = await run_in_threadpool(
            orchestrator.confirm_payment,
            event.token,
            event.succeeded,
            event.payment_id,
            "" if event.succeeded else f"gateway reported {event.event_type}",
        )
        return {
            "received": True,
            "handled": intent is not None,
            "status": intent.status.value if intent is not None else None,
        }

    # ── Admin ────────────────────────────────────────────────────

    @app.post("/v1/admin/sweep", response_model=SweepResponse)
    def admin_sweep(request: Request) -> Dict[str, Any]:
        _require_admin(request)
        return {"archived": credit_ledger.archive_expired()}

    @app.post("/v1/admin/reload-pricing", response_model=ReloadPricingResponse)
    def admin_reload_pricing(
        request: Request,
        req: Optional[ReloadPricingRequest] = None,
    ) -> Dict[str, Any]:
        _require_admin(request)
        previous = pricing.snapshot.config.version
        if req is not None and req.path:
            config = load_pricing_config(req.path)
        elif req is not None and req.config is not None:
            config = pricing_config_from_dict(req.config)
        else:
            config = load_pricing_config(settings.pricing_config_path or None)
        snapshot = pricing.reload(config)
        return {
            "previous_version": previous,
            "config_version": snapshot.config.version,
            "packages": len(snapshot.catalog),
        }

    return app


def start_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8080,
    allow_nonlocal: bool = False,
    reload: bool = False,
    settings: Optional[Settings] = None,
) -> None:
    """Validate host, create app, and start uvicorn."""
    import uvicorn

    from hourbank.core.api.settings import print_startup_warnings

    validate_host(host, allow_nonlocal)

    if settings is None:
        settings = load_settings(
            bind=host, port=port, allow_nonlocal=allow_nonlocal,
        )
    check_persistence(settings)

    print_startup_warnings(settings)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    def app_factory() -> FastAPI:
        return create_app(settings)

    uvicorn.run(
        app_factory,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
        factory=True,
    )
