"""
In-process instrument store
Holds instruments in memory and guards redemptions with a lock
"""

from typing import Dict, List, Optional, Tuple
from collections import defaultdict
from decimal import Decimal
import threading
import logging

from storefront.core.exceptions import NotFoundException, ConflictException, UsageLimitExceeded
from storefront.schemas.discount import DiscountInstrument, SelectionResult

logger = logging.getLogger(__name__)

class InMemoryInstrumentStore:
    """
    Thread-safe instrument store

    ``commit`` is a compare-and-swap on the usage counter: the limit check
    and the increment happen under one lock, so two racing redemptions of
    the last remaining use cannot both succeed.
    """

    def __init__(self, instruments: Optional[List[DiscountInstrument]] = None):
        self._lock = threading.Lock()
        self._instruments: Dict[str, DiscountInstrument] = {}
        self._redemptions: Dict[Tuple[str, str], int] = defaultdict(int)
        self._ledger: List[Dict] = []

        for instrument in instruments or []:
            self.add(instrument)

    def add(self, instrument: DiscountInstrument) -> DiscountInstrument:
        with self._lock:
            if instrument.id in self._instruments:
                raise ConflictException(f"Discount {instrument.id} already exists")
            self._instruments[instrument.id] = instrument
        return instrument

    def get(self, instrument_id: str) -> DiscountInstrument:
        with self._lock:
            return self._get(instrument_id)

    def all(self) -> List[DiscountInstrument]:
        with self._lock:
            return list(self._instruments.values())

    def set_active(self, instrument_id: str, is_active: bool) -> DiscountInstrument:
        """Flip the manual kill-switch"""
        with self._lock:
            instrument = self._get(instrument_id).model_copy(update={"is_active": is_active})
            self._instruments[instrument_id] = instrument
        return instrument

    def prior_redemptions(self, user_id: Optional[str]) -> Dict[str, int]:
        """Redemption counts per instrument for one user"""
        if user_id is None:
            return {}
        with self._lock:
            return {
                instrument_id: count
                for (instrument_id, uid), count in self._redemptions.items()
                if uid == user_id
            }

    @property
    def ledger(self) -> List[Dict]:
        with self._lock:
            return list(self._ledger)

    def commit(
        self,
        instrument_id: str,
        user_id: Optional[str] = None,
        order_id: Optional[str] = None,
        discount_amount: Decimal = Decimal("0")
    ) -> DiscountInstrument:
        """
        Record one redemption

        Raises:
            NotFoundException: If the instrument is unknown
            UsageLimitExceeded: If the global or per-user limit is reached
        """
        with self._lock:
            self._check_redeemable(instrument_id, user_id)
            return self._redeem(instrument_id, user_id, order_id, discount_amount)

    def commit_selection(
        self,
        selection: SelectionResult,
        user_id: Optional[str] = None,
        order_id: Optional[str] = None
    ) -> List[DiscountInstrument]:
        """Redeem every selected instrument that has an effect, or none of them"""
        with self._lock:
            for instrument_id in selection.redeemable_ids:
                self._check_redeemable(instrument_id, user_id)
            return [
                self._redeem(
                    instrument_id,
                    user_id,
                    order_id,
                    selection.discounts.get(instrument_id, Decimal("0"))
                )
                for instrument_id in selection.redeemable_ids
            ]

    def _get(self, instrument_id: str) -> DiscountInstrument:
        instrument = self._instruments.get(instrument_id)
        if instrument is None:
            raise NotFoundException(f"Discount {instrument_id} not found")
        return instrument

    def _check_redeemable(self, instrument_id: str, user_id: Optional[str]) -> None:
        instrument = self._get(instrument_id)

        if instrument.is_exhausted:
            logger.warning(f"Redemption of {instrument_id} lost the race for its last use")
            raise UsageLimitExceeded(instrument_id)

        if (
            instrument.per_user_limit is not None
            and user_id is not None
            and self._redemptions[(instrument_id, user_id)] >= instrument.per_user_limit
        ):
            raise UsageLimitExceeded(
                instrument_id,
                f"Discount {instrument_id} already used the maximum times by this user"
            )

    def _redeem(
        self,
        instrument_id: str,
        user_id: Optional[str],
        order_id: Optional[str],
        discount_amount: Decimal
    ) -> DiscountInstrument:
        instrument = self._instruments[instrument_id]
        updated = instrument.model_copy(update={"usage_count": instrument.usage_count + 1})
        self._instruments[instrument_id] = updated

        if user_id is not None:
            self._redemptions[(instrument_id, user_id)] += 1

        self._ledger.append({
            "instrument_id": instrument_id,
            "user_id": user_id,
            "order_id": order_id,
            "discount_amount": discount_amount,
        })
        return updated
