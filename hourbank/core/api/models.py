"""Pydantic request/response models for the hourbank API.

Money and hour quantities cross the wire as decimal strings so no float
rounding creeps into prices.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ── Health ───────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    time: str
    pricing_version: str


# ── Pricing ──────────────────────────────────────────────────────

class CharacteristicsModel(BaseModel):
    environments: int = Field(1, description="Number of environments (>= 1).")
    people: int = Field(1, description="Number of people on the job (>= 1).")
    complexity: str = Field("low", description="low, medium or high.")


class PriceRequest(BaseModel):
    hours: Decimal = Field(..., description="Hours to price.")
    characteristics: Optional[CharacteristicsModel] = None


class PriceBreakdownResponse(BaseModel):
    hours: str
    price_per_hour: str
    multiplier: str
    base_price: str
    service_fee: str
    post_work_fee: str
    organization_fee: str
    product_fee: str
    final_price: str
    tier: str
    currency: str
    characteristics: CharacteristicsModel
    config_version: str
    computed_at: float


class BookingEstimateRequest(BaseModel):
    hours: Decimal = Field(..., description="Hours the booking needs.")
    characteristics: Optional[CharacteristicsModel] = None
    customer_id: Optional[str] = Field(
        None, description="Customer whose prepaid hours may cover the booking."
    )
    use_credit: bool = Field(False, description="Apply prepaid hours if they cover the booking.")


class BookingEstimateResponse(BaseModel):
    breakdown: PriceBreakdownResponse
    final_price: str
    paid_with_credit: bool
    discounted_price: str
    discount_value: str
    available_hours: str


class PackageResponse(BaseModel):
    hours: str
    price_per_hour: str
    total_price: str
    description: str
    breakdown: Optional[PriceBreakdownResponse] = None


class PackageListResponse(BaseModel):
    packages: List[PackageResponse]
    total: int
    config_version: str


# ── Credits ──────────────────────────────────────────────────────

class CreditBalanceResponse(BaseModel):
    customer_id: str
    total_hours: str
    used_hours: str
    available_hours: str
    has_credit: bool
    active_batches: int
    next_expiry: Optional[float] = None


class BatchResponse(BaseModel):
    id: str
    customer_id: str
    hours_purchased: str
    hours_remaining: str
    purchased_at: float
    expires_at: float
    version: int
    status: str
    purchase_token: Optional[str] = None
    archived_at: Optional[float] = None


class BatchListResponse(BaseModel):
    customer_id: str
    batches: List[BatchResponse]
    total: int


class RedeemRequest(BaseModel):
    hours: Decimal = Field(..., description="Hours to consume from prepaid credit.")


class BatchDebitResponse(BaseModel):
    batch_id: str
    hours: str


class RedemptionResponse(BaseModel):
    customer_id: str
    hours_redeemed: str
    fee_waived: bool
    debits: List[BatchDebitResponse]
    available_hours: str


# ── Purchases ────────────────────────────────────────────────────

class PurchaseRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    hours: Decimal = Field(..., description="Catalog package size in hours.")
    payment_method: str = Field("card", description="card, pix, ...")
    intent_token: str = Field(..., min_length=1, description="Client-chosen idempotency key.")
    quote: Optional[Dict[str, Any]] = Field(
        None, description="A price breakdown previously returned by /v1/price."
    )
    wait: bool = Field(
        True, description="Block until the payment is confirmed (false returns 202 while pending)."
    )
    timeout_seconds: Optional[float] = Field(None, gt=0)


class PurchaseResponse(BaseModel):
    token: str
    status: str
    customer_id: str
    hours: str
    final_price: str
    batch_id: str = ""
    payment_id: str = ""


class IntentResponse(BaseModel):
    token: str
    customer_id: str
    hours: str
    payment_method: str
    amount: str
    status: str
    payment_id: str = ""
    batch_id: str = ""
    error: str = ""
    created_at: float = 0.0
    updated_at: float = 0.0


class WebhookResponse(BaseModel):
    received: bool = True
    handled: bool = False
    status: Optional[str] = None


# ── Admin ────────────────────────────────────────────────────────

class SweepResponse(BaseModel):
    archived: int


class ReloadPricingRequest(BaseModel):
    config: Optional[Dict[str, Any]] = Field(
        None, description="Pricing overrides merged onto the defaults."
    )
    path: Optional[str] = Field(None, description="YAML file to load instead.")


class ReloadPricingResponse(BaseModel):
    previous_version: str
    config_version: str
    packages: int
