"""Discount router for validation, resolution and redemption"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime, timezone
from decimal import Decimal
import uuid

from storefront.core.database import get_db
from storefront.schemas.discount import CheckoutContext
from storefront.services.discount_engine import total_after_discount
from .schemas import (
    CheckoutRequest,
    EventCreate,
    EventStatusResponse,
    InstrumentResponse,
    RedeemRequest,
    SelectionResponse,
    SpinCouponRequest,
    ValidateCodeRequest,
    ValidateCodeResponse,
)
from .services import DiscountService

router = APIRouter()

def get_clock() -> datetime:
    """Current time for discount evaluation"""
    return datetime.now(timezone.utc)

def _selection_response(context: CheckoutContext, selection) -> SelectionResponse:
    return SelectionResponse(
        **selection.model_dump(),
        subtotal=context.subtotal,
        total=total_after_discount(context.subtotal, selection)
    )

@router.post("/validate", response_model=ValidateCodeResponse)
async def validate_code(
    request: ValidateCodeRequest,
    now: datetime = Depends(get_clock),
    db: AsyncSession = Depends(get_db)
):
    """Validate a discount code against the cart"""
    service = DiscountService(db)
    result = await service.validate_code(request.code, request.to_context(now))
    return ValidateCodeResponse(**result)

@router.post("/resolve", response_model=SelectionResponse)
async def resolve_cart(
    request: CheckoutRequest,
    now: datetime = Depends(get_clock),
    db: AsyncSession = Depends(get_db)
):
    """Pick the best discounts for the cart"""
    service = DiscountService(db)
    context = request.to_context(now)
    selection = await service.resolve_checkout(context)
    return _selection_response(context, selection)

@router.post("/redeem", response_model=SelectionResponse)
async def redeem(
    request: RedeemRequest,
    now: datetime = Depends(get_clock),
    db: AsyncSession = Depends(get_db)
):
    """Redeem the selected discounts for a finalized order"""
    service = DiscountService(db)
    context = request.to_context(now)
    selection = await service.redeem(context, order_id=request.order_id)
    return _selection_response(context, selection)

@router.get("/available", response_model=List[InstrumentResponse])
async def get_available(
    subtotal: Decimal = Query(Decimal("0"), ge=0),
    user_id: Optional[str] = Query(None, max_length=64),
    user_segment: Optional[str] = Query(None, max_length=50),
    now: datetime = Depends(get_clock),
    db: AsyncSession = Depends(get_db)
):
    """List discounts usable for the given order value"""
    service = DiscountService(db)
    context = CheckoutContext(
        subtotal=subtotal,
        user_id=user_id,
        user_segment=user_segment,
        now=now
    )
    instruments = await service.available(context)
    return [InstrumentResponse.model_validate(instrument) for instrument in instruments]

@router.post("/spin", response_model=InstrumentResponse, status_code=status.HTTP_201_CREATED)
async def issue_spin_coupon(
    request: SpinCouponRequest,
    now: datetime = Depends(get_clock),
    db: AsyncSession = Depends(get_db)
):
    """Issue the coupon won on the spin wheel"""
    service = DiscountService(db)
    record = await service.generate_spin_coupon(request.user_id, request.discount_percent, now)
    return InstrumentResponse.model_validate(record.to_instrument())

@router.post("/events", status_code=status.HTTP_201_CREATED)
async def create_event(
    request: EventCreate,
    db: AsyncSession = Depends(get_db)
):
    """Create a campaign event"""
    service = DiscountService(db)
    event = await service.create_event(request)
    return {"id": event.id, "name": event.name, "status": event.status}

@router.post("/events/{event_id}/activate", response_model=EventStatusResponse)
async def activate_event(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db)
):
    """Activate an event and its discounts"""
    service = DiscountService(db)
    return await service.activate_event(event_id)

@router.post("/events/{event_id}/deactivate", response_model=EventStatusResponse)
async def deactivate_event(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db)
):
    """Complete an event and switch off its discounts"""
    service = DiscountService(db)
    return await service.deactivate_event(event_id)
