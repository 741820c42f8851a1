"""
Allocation tracker: splits a payment across one or more bills.

The sum of a payment's allocations never exceeds the payment, and the sum
of a bill's allocations never exceeds the bill. Bill status is derived from
allocations, not stored.
"""

from datetime import date
from decimal import Decimal
from threading import Lock
from typing import Iterable, Optional, Union
import logging

from ..adapters.base import AllocationStore
from ..config import as_decimal
from ..models.records import Allocation, Bill, BillStatus, PaymentAllocationSummary
from ..utils.exceptions import NotFoundError, ReconciliationError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class AllocationTracker:
    """Validates and records payment-to-bill allocations."""

    def __init__(self, store: AllocationStore):
        self.store = store
        self._payments: dict[str, Decimal] = {}
        self._bills: dict[str, Bill] = {}
        self._lock = Lock()

    def register_payment(self, payment_id: str, amount: Union[Decimal, float, str]) -> None:
        amount = as_decimal(amount)
        if amount <= 0:
            raise ValidationError(f"Payment {payment_id}: amount must be positive, got {amount}")
        self._payments[payment_id] = amount

    def register_bill(
        self,
        bill_id: str,
        total_amount: Union[Decimal, float, str],
        base_status: str = "unpaid",
    ) -> Bill:
        bill = Bill(bill_id=bill_id, total_amount=as_decimal(total_amount), base_status=base_status)
        if bill.total_amount <= 0:
            raise ValidationError(
                f"Bill {bill_id}: total must be positive, got {bill.total_amount}"
            )
        self._bills[bill_id] = bill
        return bill

    def _payment_amount(self, payment_id: str) -> Decimal:
        amount = self._payments.get(payment_id)
        if amount is None:
            raise NotFoundError(f"Payment not found: {payment_id}")
        return amount

    def _bill(self, bill_id: str) -> Bill:
        bill = self._bills.get(bill_id)
        if bill is None:
            raise NotFoundError(f"Bill not found: {bill_id}")
        return bill

    def payment_unallocated(self, payment_id: str) -> Decimal:
        allocated = sum((a.allocated_amount for a in self.store.for_payment(payment_id)), ZERO)
        return self._payment_amount(payment_id) - allocated

    def bill_balance_due(self, bill_id: str) -> Decimal:
        bill = self._bill(bill_id)
        allocated = sum((a.allocated_amount for a in self.store.for_bill(bill_id)), ZERO)
        return bill.total_amount - allocated

    def allocate(
        self,
        payment_id: str,
        bill_id: str,
        amount: Union[Decimal, float, str],
        allocation_date: Optional[date] = None,
    ) -> Allocation:
        """
        Apply part of a payment to a bill.

        Raises:
            NotFoundError: Unknown payment or bill
            ValidationError: Non-positive amount, or more than the payment's
                unallocated balance or the bill's balance due
        """
        with self._lock:
            return self._allocate_locked(payment_id, bill_id, as_decimal(amount), allocation_date)

    def allocate_bulk(
        self,
        payment_id: str,
        allocations: Iterable[tuple[str, Union[Decimal, float, str]]],
        allocation_date: Optional[date] = None,
    ) -> list[Allocation]:
        """
        Apply a payment across several bills, all or nothing.

        Every line is validated against the running balances before anything
        is written.
        """
        lines = [(bill_id, as_decimal(amount)) for bill_id, amount in allocations]
        if not lines:
            raise ValidationError(f"No allocations given for payment {payment_id}")

        with self._lock:
            remaining = self.payment_unallocated(payment_id)
            bill_remaining: dict[str, Decimal] = {}
            for bill_id, amount in lines:
                if amount <= 0:
                    raise ValidationError(f"Allocation amount must be positive, got {amount}")
                if bill_id not in bill_remaining:
                    bill_remaining[bill_id] = self.bill_balance_due(bill_id)
                if amount > remaining:
                    raise ValidationError(
                        f"Allocations exceed unallocated balance of payment {payment_id} "
                        f"(₹{self._payment_amount(payment_id):,.2f})"
                    )
                if amount > bill_remaining[bill_id]:
                    raise ValidationError(
                        f"Allocation of ₹{amount:,.2f} exceeds balance due on bill {bill_id}"
                    )
                remaining -= amount
                bill_remaining[bill_id] -= amount

            existing = self.store.for_payment(payment_id)
            created: list[Allocation] = []
            try:
                for bill_id, amount in lines:
                    created.append(
                        self._store_allocation(payment_id, bill_id, amount, allocation_date)
                    )
            except ReconciliationError:
                self._restore(payment_id, existing)
                raise

        logger.info(f"Allocated payment {payment_id} across {len(created)} bill(s)")
        return created

    def _restore(self, payment_id: str, allocations: list[Allocation]) -> None:
        self.store.unallocate_all(payment_id)
        for a in allocations:
            self.store.allocate(a.payment_id, a.bill_id, a.allocated_amount, a.allocation_date)

    def _allocate_locked(
        self,
        payment_id: str,
        bill_id: str,
        amount: Decimal,
        allocation_date: Optional[date],
    ) -> Allocation:
        if amount <= 0:
            raise ValidationError(f"Allocation amount must be positive, got {amount}")

        unallocated = self.payment_unallocated(payment_id)
        if amount > unallocated:
            raise ValidationError(
                f"Allocation of ₹{amount:,.2f} exceeds unallocated balance "
                f"₹{unallocated:,.2f} of payment {payment_id}"
            )
        balance_due = self.bill_balance_due(bill_id)
        if amount > balance_due:
            raise ValidationError(
                f"Allocation of ₹{amount:,.2f} exceeds balance due "
                f"₹{balance_due:,.2f} on bill {bill_id}"
            )

        allocation = self._store_allocation(payment_id, bill_id, amount, allocation_date)
        logger.info(f"Allocated ₹{amount:,.2f} of payment {payment_id} to bill {bill_id}")
        return allocation

    def _store_allocation(
        self,
        payment_id: str,
        bill_id: str,
        amount: Decimal,
        allocation_date: Optional[date],
    ) -> Allocation:
        try:
            return self.store.allocate(payment_id, bill_id, amount, allocation_date or date.today())
        except ReconciliationError:
            raise
        except Exception as e:
            logger.error(f"Allocation store failed for payment {payment_id}: {e}")
            raise UpstreamError(f"Allocation store failed: {e}") from e

    def unallocate_all(self, payment_id: str) -> None:
        """Remove every allocation of a payment; bill statuses follow."""
        with self._lock:
            self._payment_amount(payment_id)
            self.store.unallocate_all(payment_id)
        logger.info(f"Removed allocations of payment {payment_id}")

    def bill_status(self, bill_id: str) -> Union[BillStatus, str]:
        """
        Settlement status of a bill.

        ``paid`` once fully allocated, ``partially_paid`` while some balance
        remains, otherwise the bill's own base status.
        """
        bill = self._bill(bill_id)
        balance_due = self.bill_balance_due(bill_id)
        if balance_due <= 0:
            return BillStatus.PAID
        if balance_due < bill.total_amount:
            return BillStatus.PARTIALLY_PAID
        return bill.base_status

    def payment_summary(self, payment_id: str) -> PaymentAllocationSummary:
        return PaymentAllocationSummary(
            payment_id=payment_id,
            payment_amount=self._payment_amount(payment_id),
            allocations=self.store.for_payment(payment_id),
        )
