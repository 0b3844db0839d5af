"""
Discount service layer
Loads instruments from the database, resolves checkouts and records redemptions
"""

from typing import Dict, Any, List, Optional
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, or_, func
import uuid
import logging

from storefront.models import CampaignEvent, DiscountInstrumentRecord, EventStatus, InstrumentRedemption
from storefront.core.config import settings
from storefront.core.exceptions import ConflictException, NotFoundException, UsageLimitExceeded
from storefront.schemas.discount import CheckoutContext, DiscountInstrument, DiscountKind, DiscountType, SelectionResult
from storefront.services.discount_engine import available_instruments, compute_discount, explain_invalid, resolve
from storefront.utils.helpers import ensure_utc, generate_coupon_code
from .schemas import EventCreate, InstrumentCreate

logger = logging.getLogger(__name__)

class DiscountService:
    """Service for discount instrument operations"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_instrument(
        self,
        data: InstrumentCreate,
        **extra: Any
    ) -> DiscountInstrumentRecord:
        """
        Create a discount instrument

        Args:
            data: Instrument definition
            extra: Additional column values (spin wheel fields)

        Returns:
            Persisted instrument

        Raises:
            InvalidInstrumentConfig: If the definition breaks an invariant
            ConflictException: If the code is already taken
        """
        code = data.code.strip().upper()
        if await self.get_by_code(code):
            raise ConflictException(
                f"Discount with code '{code}' already exists",
                error_code="DUPLICATE_RESOURCE"
            )

        fields = data.model_dump(exclude={"code"})
        fields["valid_from"] = ensure_utc(data.valid_from)
        fields["valid_until"] = ensure_utc(data.valid_until)
        fields["kind"] = data.kind.value
        fields["discount_type"] = data.discount_type.value

        record = DiscountInstrumentRecord(
            id=uuid.uuid4(),
            code=code,
            usage_count=0,
            **fields,
            **extra
        )

        # Rejects invalid configurations before anything is written
        record.to_instrument()

        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)

        logger.info(f"Created {record.kind} {record.code} ({record.discount_type} {record.value})")
        return record

    async def get_by_code(self, code: str) -> Optional[DiscountInstrumentRecord]:
        """Get instrument by code"""
        result = await self.db.execute(
            select(DiscountInstrumentRecord).where(
                DiscountInstrumentRecord.code == code.strip().upper()
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def load_candidates(
        self,
        now: datetime,
        event_id: Optional[uuid.UUID] = None
    ) -> List[DiscountInstrument]:
        """
        Load instruments that are switched on and inside their window

        The engine re-checks every rule; this only narrows the query.
        """
        now = ensure_utc(now)
        conditions = [
            DiscountInstrumentRecord.is_active == True,
            DiscountInstrumentRecord.valid_from <= now,
            DiscountInstrumentRecord.valid_until >= now,
        ]
        if event_id:
            conditions.append(DiscountInstrumentRecord.event_id == event_id)

        result = await self.db.execute(
            select(DiscountInstrumentRecord)
            .where(and_(*conditions))
            .order_by(DiscountInstrumentRecord.valid_until)
            .execution_options(populate_existing=True)
        )
        return [record.to_instrument() for record in result.scalars().all()]

    async def prior_redemptions(self, user_id: Optional[str]) -> Dict[str, int]:
        """Redemption counts per instrument for one user"""
        if not user_id:
            return {}

        result = await self.db.execute(
            select(InstrumentRedemption.instrument_id, func.count(InstrumentRedemption.id))
            .where(InstrumentRedemption.user_id == user_id)
            .group_by(InstrumentRedemption.instrument_id)
        )
        return {str(instrument_id): count for instrument_id, count in result.all()}

    async def with_redemptions(self, context: CheckoutContext) -> CheckoutContext:
        """Fill the user's redemption history into a checkout context"""
        return context.model_copy(
            update={"prior_redemptions_by_user": await self.prior_redemptions(context.user_id)}
        )

    async def resolve_checkout(self, context: CheckoutContext) -> SelectionResult:
        """Select the discounts for a checkout"""
        context = await self.with_redemptions(context)
        return resolve(await self.load_candidates(context.now), context)

    async def available(self, context: CheckoutContext) -> List[DiscountInstrument]:
        """Instruments the shopper could use right now, soonest-expiring first"""
        context = await self.with_redemptions(context)
        return available_instruments(await self.load_candidates(context.now), context)

    async def validate_code(
        self,
        code: str,
        context: CheckoutContext
    ) -> Dict[str, Any]:
        """
        Validate a discount code against a checkout and calculate its discount
        """
        record = await self.get_by_code(code)
        if not record:
            return {
                "valid": False,
                "message": "Invalid discount code"
            }

        instrument = record.to_instrument()
        context = await self.with_redemptions(context)

        reason = explain_invalid(instrument, context)
        if reason:
            return {
                "valid": False,
                "code": instrument.code,
                "message": reason
            }

        outcome = compute_discount(instrument, context)
        return {
            "valid": True,
            "code": instrument.code,
            "discount_amount": outcome.amount,
            "free_shipping": outcome.free_shipping,
            "message": "Discount applied"
        }

    async def commit(
        self,
        instrument_id: str,
        user_id: Optional[str] = None,
        order_id: Optional[str] = None,
        discount_amount: Decimal = Decimal("0")
    ) -> None:
        """
        Record one redemption of a finalized order

        Raises:
            NotFoundException: If the instrument is unknown
            UsageLimitExceeded: If the global or per-user limit is reached
        """
        try:
            await self._record_redemption(instrument_id, user_id, order_id, discount_amount)
            await self.db.commit()
        except UsageLimitExceeded:
            await self.db.rollback()
            raise

    async def redeem(
        self,
        context: CheckoutContext,
        order_id: Optional[str] = None
    ) -> SelectionResult:
        """
        Resolve a checkout and redeem the whole selection in one transaction

        A lost race rolls the transaction back and resolution runs again
        without the exhausted instrument, up to DISCOUNT_COMMIT_RETRIES times.
        Selected instruments that compute to nothing use no redemption.

        Returns:
            The selection that was actually redeemed

        Raises:
            UsageLimitExceeded: If contention persists past the retries
        """
        excluded = set()
        attempts = 0

        while True:
            checkout = await self.with_redemptions(context)
            candidates = [
                instrument for instrument in await self.load_candidates(checkout.now)
                if instrument.id not in excluded
            ]
            selection = resolve(candidates, checkout)

            try:
                for instrument_id in selection.redeemable_ids:
                    await self._record_redemption(
                        instrument_id,
                        context.user_id,
                        order_id,
                        selection.discounts.get(instrument_id, Decimal("0"))
                    )
                await self.db.commit()
                return selection

            except UsageLimitExceeded as e:
                await self.db.rollback()
                if attempts >= settings.DISCOUNT_COMMIT_RETRIES:
                    raise
                attempts += 1
                excluded.add(e.instrument_id)
                logger.warning(
                    f"Discount {e.instrument_id} exhausted during redemption, re-resolving "
                    f"(attempt {attempts})"
                )

    async def _record_redemption(
        self,
        instrument_id: str,
        user_id: Optional[str],
        order_id: Optional[str],
        discount_amount: Decimal
    ) -> None:
        record_id = uuid.UUID(instrument_id)
        record = await self.db.get(DiscountInstrumentRecord, record_id, populate_existing=True)
        if not record:
            raise NotFoundException(f"Discount {instrument_id} not found")

        if record.per_user_limit and user_id:
            used = await self.db.scalar(
                select(func.count(InstrumentRedemption.id)).where(
                    and_(
                        InstrumentRedemption.instrument_id == record_id,
                        InstrumentRedemption.user_id == user_id
                    )
                )
            )
            if used >= record.per_user_limit:
                raise UsageLimitExceeded(
                    instrument_id,
                    f"Discount {record.code} already used the maximum times by this user"
                )

        # Single conditional update so concurrent redemptions cannot oversell
        result = await self.db.execute(
            update(DiscountInstrumentRecord)
            .where(
                and_(
                    DiscountInstrumentRecord.id == record_id,
                    or_(
                        DiscountInstrumentRecord.usage_limit.is_(None),
                        DiscountInstrumentRecord.usage_count < DiscountInstrumentRecord.usage_limit
                    )
                )
            )
            .values(usage_count=DiscountInstrumentRecord.usage_count + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.warning(f"Redemption of {record.code} lost the race for its last use")
            raise UsageLimitExceeded(instrument_id)

        self.db.add(InstrumentRedemption(
            instrument_id=record_id,
            user_id=user_id or "anonymous",
            order_id=order_id,
            discount_amount=discount_amount
        ))
        await self.db.flush()
        await self.db.refresh(record)

    async def generate_spin_coupon(
        self,
        user_id: str,
        discount_percent: Decimal,
        now: datetime
    ) -> DiscountInstrumentRecord:
        """Issue a single-use percentage coupon won on the spin wheel"""
        now = ensure_utc(now)
        data = InstrumentCreate(
            code=generate_coupon_code("SPIN", now),
            name=f"Lucky Spin Reward - {discount_percent}% Off",
            description="Congratulations! You won this coupon from your lucky spin!",
            kind=DiscountKind.COUPON,
            discount_type=DiscountType.PERCENTAGE,
            value=discount_percent,
            min_order_amount=settings.SPIN_COUPON_MIN_ORDER,
            max_discount_amount=settings.SPIN_COUPON_MAX_DISCOUNT,
            valid_from=now,
            valid_until=now + timedelta(days=settings.SPIN_COUPON_VALID_DAYS),
            usage_limit=1,
            per_user_limit=1,
        )
        return await self.create_instrument(data, is_spin_generated=True, generated_for=user_id)

    async def create_event(self, data: EventCreate) -> CampaignEvent:
        """Create a campaign event in draft status"""
        event = CampaignEvent(
            id=uuid.uuid4(),
            name=data.name,
            description=data.description,
            event_type=data.event_type,
            start_date=ensure_utc(data.start_date),
            end_date=ensure_utc(data.end_date),
            status=EventStatus.DRAFT.value,
            priority=data.priority,
            target_audience=data.target_audience
        )
        self.db.add(event)
        await self.db.commit()
        await self.db.refresh(event)
        return event

    async def activate_event(self, event_id: uuid.UUID) -> Dict[str, Any]:
        """Activate an event and switch on its auto-activated discounts"""
        return await self._set_event_state(event_id, EventStatus.ACTIVE, True)

    async def deactivate_event(self, event_id: uuid.UUID) -> Dict[str, Any]:
        """Complete an event and switch off its linked discounts"""
        return await self._set_event_state(event_id, EventStatus.COMPLETED, False)

    async def _set_event_state(
        self,
        event_id: uuid.UUID,
        status: EventStatus,
        is_active: bool
    ) -> Dict[str, Any]:
        event = await self.db.get(CampaignEvent, event_id)
        if not event:
            raise NotFoundException("Event not found")

        event_name = event.name
        event.status = status.value

        conditions = [DiscountInstrumentRecord.event_id == event_id]
        if is_active:
            # Only discounts flagged for it follow the event on; all follow it off
            conditions.append(DiscountInstrumentRecord.auto_activate == True)

        result = await self.db.execute(
            update(DiscountInstrumentRecord)
            .where(and_(*conditions))
            .values(is_active=is_active)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info(f"Event {event_name} is now {status.value}, {result.rowcount} discounts updated")
        return {
            "event_id": event_id,
            "status": status.value,
            "instruments_updated": result.rowcount
        }
