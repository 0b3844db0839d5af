import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from storefront.api.v1.discounts.schemas import EventCreate, InstrumentCreate
from storefront.api.v1.discounts.services import DiscountService
from storefront.core.config import settings
from storefront.core.exceptions import ConflictException, InvalidInstrumentConfig, NotFoundException, UsageLimitExceeded
from storefront.models import InstrumentRedemption
from storefront.schemas.discount import DiscountType
from tests.conftest import NOW

async def create(service, **overrides):
    fields = {
        "code": "SAVE10",
        "name": "Save 10%",
        "discount_type": DiscountType.PERCENTAGE,
        "value": Decimal("10"),
        "valid_from": NOW - timedelta(days=1),
        "valid_until": NOW + timedelta(days=7),
    }
    fields.update(overrides)
    record = await service.create_instrument(InstrumentCreate(**fields))
    return str(record.id)

async def usage_count(service, code):
    record = await service.get_by_code(code)
    return record.usage_count

async def test_create_instrument(db_session):
    service = DiscountService(db_session)
    await create(service, code="welcome20", value=Decimal("20"))

    record = await service.get_by_code("WELCOME20")
    assert record.code == "WELCOME20"
    assert record.usage_count == 0
    assert record.kind == "coupon"
    assert record.to_instrument().value == Decimal("20")

async def test_duplicate_code_rejected(db_session):
    service = DiscountService(db_session)
    await create(service)
    with pytest.raises(ConflictException) as exc:
        await create(service, code="save10")
    assert exc.value.error_code == "DUPLICATE_RESOURCE"

async def test_invalid_config_never_stored(db_session):
    service = DiscountService(db_session)
    with pytest.raises(InvalidInstrumentConfig):
        await create(service, code="TOOMUCH", value=Decimal("150"))
    with pytest.raises(InvalidInstrumentConfig):
        await create(service, code="BACKWARDS", valid_from=NOW, valid_until=NOW - timedelta(days=1))
    assert await service.get_by_code("TOOMUCH") is None
    assert await service.get_by_code("BACKWARDS") is None

async def test_commit_stops_at_usage_limit(db_session):
    service = DiscountService(db_session)
    instrument_id = await create(service, code="ONEUSE", usage_limit=1)

    await service.commit(instrument_id, user_id="user-1", order_id="order-1")
    with pytest.raises(UsageLimitExceeded) as exc:
        await service.commit(instrument_id, user_id="user-2", order_id="order-2")

    assert exc.value.instrument_id == instrument_id
    assert await usage_count(service, "ONEUSE") == 1

async def test_commit_unknown_instrument(db_session):
    service = DiscountService(db_session)
    with pytest.raises(NotFoundException):
        await service.commit(str(uuid.uuid4()))

async def test_per_user_limit(db_session, make_context):
    service = DiscountService(db_session)
    instrument_id = await create(service, code="FIRSTORDER", per_user_limit=1)

    await service.commit(instrument_id, user_id="user-1")
    with pytest.raises(UsageLimitExceeded):
        await service.commit(instrument_id, user_id="user-1")
    await service.commit(instrument_id, user_id="user-2")

    assert await service.prior_redemptions("user-1") == {instrument_id: 1}
    result = await service.validate_code("FIRSTORDER", make_context(user_id="user-1"))
    assert result["valid"] is False
    assert result["message"] == "You have already used this discount the maximum number of times"

async def test_validate_code(db_session, make_context):
    service = DiscountService(db_session)
    await create(
        service,
        code="WELCOME20",
        value=Decimal("20"),
        min_order_amount=Decimal("5000"),
        max_discount_amount=Decimal("2000")
    )

    unknown = await service.validate_code("NOPE", make_context())
    assert unknown == {"valid": False, "message": "Invalid discount code"}

    too_small = await service.validate_code("welcome20", make_context(subtotal="3000"))
    assert too_small["valid"] is False
    assert "Minimum order amount" in too_small["message"]

    applied = await service.validate_code("WELCOME20", make_context(subtotal="12000"))
    assert applied["valid"] is True
    assert applied["discount_amount"] == Decimal("2000.00")

async def test_resolve_checkout_stacks(db_session, make_context):
    service = DiscountService(db_session)
    await create(service, code="FLAT500", discount_type=DiscountType.FIXED_AMOUNT, value=Decimal("500"), stackable=True)
    await create(service, code="TENOFF", value=Decimal("10"), stackable=True)
    await create(service, code="LATER", valid_from=NOW + timedelta(days=1), valid_until=NOW + timedelta(days=2))

    selection = await service.resolve_checkout(make_context(subtotal="4000"))
    assert len(selection.instrument_ids) == 2
    assert selection.total_discount == Decimal("900.00")

async def test_available_excludes_used_up(db_session, make_context):
    service = DiscountService(db_session)
    used = await create(service, code="USEDUP", usage_limit=1)
    await create(service, code="OPEN", valid_until=NOW + timedelta(days=3))
    await service.commit(used)

    codes = [i.code for i in await service.available(make_context())]
    assert codes == ["OPEN"]

async def test_redeem_records_selection(db_session, make_context):
    service = DiscountService(db_session)
    await create(service, code="TENOFF", usage_limit=5)

    selection = await service.redeem(make_context(subtotal="2000"), order_id="order-1")

    assert selection.total_discount == Decimal("200.00")
    assert await usage_count(service, "TENOFF") == 1
    assert await service.prior_redemptions("user-1") == {selection.instrument_ids[0]: 1}

async def test_redeem_nothing_applicable(db_session, make_context):
    service = DiscountService(db_session)
    await create(service, code="BIGSPEND", min_order_amount=Decimal("10000"))
    selection = await service.redeem(make_context(subtotal="100"), order_id="order-1")
    assert selection.is_empty
    assert await usage_count(service, "BIGSPEND") == 0

async def test_redeem_re_resolves_after_lost_race(db_session, make_context, monkeypatch):
    service = DiscountService(db_session)
    await create(service, code="FLASH20", value=Decimal("20"), usage_limit=1)
    backup_id = await create(service, code="BACKUP10", value=Decimal("10"))

    stale = await service.load_candidates(NOW)
    load_fresh = service.load_candidates
    calls = []

    async def load_candidates(now, event_id=None):
        calls.append(now)
        if len(calls) == 1:
            return stale
        return await load_fresh(now, event_id)

    # Another checkout takes the last use after this one resolved
    await service.commit(next(i.id for i in stale if i.code == "FLASH20"))
    monkeypatch.setattr(service, "load_candidates", load_candidates)

    selection = await service.redeem(make_context(subtotal="1000"), order_id="order-7")

    assert len(calls) == 2
    assert selection.instrument_ids == [backup_id]
    assert selection.total_discount == Decimal("100.00")
    assert await usage_count(service, "FLASH20") == 1
    assert await usage_count(service, "BACKUP10") == 1

async def test_redeem_gives_up_after_retries(db_session, make_context, monkeypatch):
    service = DiscountService(db_session)
    await create(service, code="FLASH20", value=Decimal("20"), usage_limit=1)
    stale = await service.load_candidates(NOW)
    assert [i.code for i in stale] == ["FLASH20"]
    await service.commit(stale[0].id)

    async def load_candidates(now, event_id=None):
        return stale

    monkeypatch.setattr(service, "load_candidates", load_candidates)
    monkeypatch.setattr(settings, "DISCOUNT_COMMIT_RETRIES", 0)

    with pytest.raises(UsageLimitExceeded):
        await service.redeem(make_context(subtotal="1000"), order_id="order-8")
    assert await usage_count(service, "FLASH20") == 1

async def test_failed_redeem_rolls_back_whole_selection(db_session, make_context, monkeypatch):
    service = DiscountService(db_session)
    await create(service, code="STACKA", value=Decimal("10"), stackable=True)
    await create(service, code="STACKB", value=Decimal("5"), stackable=True, usage_limit=1)
    stale = await service.load_candidates(NOW)
    await service.commit(next(i.id for i in stale if i.code == "STACKB"))

    async def load_candidates(now, event_id=None):
        return stale

    monkeypatch.setattr(service, "load_candidates", load_candidates)
    monkeypatch.setattr(settings, "DISCOUNT_COMMIT_RETRIES", 0)

    with pytest.raises(UsageLimitExceeded):
        await service.redeem(make_context(subtotal="1000"), order_id="order-9")
    assert await usage_count(service, "STACKA") == 0

async def test_spin_coupon(db_session):
    service = DiscountService(db_session)
    record = await service.generate_spin_coupon("user-42", Decimal("15"), NOW)

    assert record.code.startswith("SPIN")
    assert record.name == "Lucky Spin Reward - 15% Off"
    assert record.discount_type == "percentage"
    assert record.usage_limit == 1
    assert record.per_user_limit == 1
    assert record.is_spin_generated is True
    assert record.generated_for == "user-42"
    assert record.min_order_amount == Decimal(str(settings.SPIN_COUPON_MIN_ORDER))
    assert record.max_discount_amount == Decimal(str(settings.SPIN_COUPON_MAX_DISCOUNT))
    assert record.valid_until - record.valid_from == timedelta(days=settings.SPIN_COUPON_VALID_DAYS)

async def test_event_activation_switches_linked_discounts(db_session):
    service = DiscountService(db_session)
    event = await service.create_event(EventCreate(
        name="Diwali Sale",
        event_type="holiday",
        start_date=NOW - timedelta(days=1),
        end_date=NOW + timedelta(days=5),
    ))
    event_id = event.id
    assert event.status == "draft"

    await create(service, code="DIWALI30", value=Decimal("30"), event_id=event_id, is_active=False)
    await create(service, code="DIWALIVIP", value=Decimal("40"), event_id=event_id, is_active=False, auto_activate=False)
    await create(service, code="EVERYDAY", value=Decimal("5"))

    activated = await service.activate_event(event_id)
    assert activated == {"event_id": event_id, "status": "active", "instruments_updated": 1}
    assert [i.code for i in await service.load_candidates(NOW, event_id=event_id)] == ["DIWALI30"]

    deactivated = await service.deactivate_event(event_id)
    assert deactivated["status"] == "completed"
    assert deactivated["instruments_updated"] == 2
    codes = [i.code for i in await service.load_candidates(NOW)]
    assert codes == ["EVERYDAY"]

async def test_unknown_event(db_session):
    service = DiscountService(db_session)
    with pytest.raises(NotFoundException):
        await service.activate_event(uuid.uuid4())

async def _commit_in_own_session(factory, instrument_id, n):
    async with factory() as session:
        try:
            await DiscountService(session).commit(instrument_id, user_id=f"user-{n}", order_id=f"order-{n}")
            return "ok"
        except UsageLimitExceeded:
            return "limit"

async def test_concurrent_commits_of_last_use(file_session_factory):
    async with file_session_factory() as session:
        instrument_id = await create(DiscountService(session), code="LASTONE", usage_limit=1)

    outcomes = await asyncio.gather(
        _commit_in_own_session(file_session_factory, instrument_id, 1),
        _commit_in_own_session(file_session_factory, instrument_id, 2),
    )

    assert sorted(outcomes) == ["limit", "ok"]
    async with file_session_factory() as session:
        service = DiscountService(session)
        assert await usage_count(service, "LASTONE") == 1
        redemptions = await session.scalar(select(func.count(InstrumentRedemption.id)))
        assert redemptions == 1

async def test_concurrent_commits_respect_limit(file_session_factory):
    async with file_session_factory() as session:
        instrument_id = await create(DiscountService(session), code="HOT3", usage_limit=3)

    outcomes = await asyncio.gather(*[
        _commit_in_own_session(file_session_factory, instrument_id, n) for n in range(8)
    ])

    assert outcomes.count("ok") == 3
    assert outcomes.count("limit") == 5
    async with file_session_factory() as session:
        assert await usage_count(DiscountService(session), "HOT3") == 3

async def test_redeem_skips_inert_winner(db_session, make_context):
    service = DiscountService(db_session)
    await create(service, code="BOGOSHOES", discount_type=DiscountType.BUY_ONE_GET_ONE, value=Decimal("0"), usage_limit=5)
    await create(service, code="LOYAL10", stackable=True)

    context = make_context(subtotal="800", lines=[{"product_id": "p1", "amount": "800"}])
    selection = await service.redeem(context, order_id="order-3")

    assert len(selection.instrument_ids) == 1
    assert selection.total_discount == Decimal("0")
    assert await usage_count(service, "BOGOSHOES") == 0
    assert await usage_count(service, "LOYAL10") == 0
