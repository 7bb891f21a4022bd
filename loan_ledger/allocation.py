"""
Payment Allocation Module

Splits a payment between the interest and principal of the item currently
due, interest first. The same rule is replayed over the payment history to
find out how much of every installment has been covered, which is what the
balance reconstruction builds on.

Regular installments and charges are tracked separately: a payment is
attributed to a due date and to one of the two groups, and within a group the
rows sharing that due date are filled in installment-number order.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from .errors import ValidationError
from .models import Installment, Payment, PaymentKind
from .money import TOLERANCE, ZERO, round2, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class InstallmentProgress:
    """How much of one installment the payment history has covered"""
    installment: Installment
    interest_paid: Decimal = ZERO
    principal_paid: Decimal = ZERO

    @property
    def interest_due(self) -> Decimal:
        return max(ZERO, round2(self.installment.interest_amount - self.interest_paid))

    @property
    def principal_due(self) -> Decimal:
        return max(ZERO, round2(self.installment.principal_amount - self.principal_paid))

    @property
    def outstanding(self) -> Decimal:
        return round2(self.interest_due + self.principal_due)

    @property
    def is_covered(self) -> bool:
        return self.outstanding <= TOLERANCE

    @property
    def has_payments(self) -> bool:
        return self.interest_paid > 0 or self.principal_paid > 0

    def apply(self, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """Apply up to `amount`, interest first; returns (interest, principal) taken"""
        interest = min(amount, self.interest_due)
        principal = min(round2(amount - interest), self.principal_due)
        self.interest_paid = round2(self.interest_paid + interest)
        self.principal_paid = round2(self.principal_paid + principal)
        return interest, principal


@dataclass
class AllocationResult:
    """Split of one payment against the current due item"""
    installment_id: str
    installment_number: int
    due_date: date
    is_charge: bool
    amount: Decimal
    interest_applied: Decimal
    principal_applied: Decimal
    applies_to_next: Decimal      # Part of the amount beyond this item's outstanding balance
    interest_due: Decimal         # Before this payment
    principal_due: Decimal        # Before this payment
    remaining_after: Decimal
    completes_installment: bool

    @property
    def applied_amount(self) -> Decimal:
        return round2(self.interest_applied + self.principal_applied)


def _group_key(due_date: date, is_charge: bool) -> Tuple[date, bool]:
    return (due_date, is_charge)


def replay_payments(installments: Iterable[Installment],
                    payments: Iterable[Payment]) -> Dict[str, InstallmentProgress]:
    """
    Rebuild per-installment progress from the payment history

    Each regular payment is matched to the rows of its due date and group
    (charges or regular installments) and spread over them interest first,
    lowest installment number first. Settlement payments are not replayed.

    Returns:
        Progress keyed by installment id
    """
    progress = {row.id: InstallmentProgress(row) for row in installments}

    groups: Dict[Tuple[date, bool], List[InstallmentProgress]] = defaultdict(list)
    for item in progress.values():
        groups[_group_key(item.installment.due_date, item.installment.is_charge)].append(item)
    for rows in groups.values():
        rows.sort(key=lambda p: p.installment.installment_number)

    ordered = sorted(payments, key=lambda p: (p.payment_date, p.created_at))
    for payment in ordered:
        if payment.kind != PaymentKind.REGULAR or payment.due_date is None:
            continue
        remaining = payment.applied_amount
        if remaining <= 0:
            continue

        rows = groups.get(_group_key(payment.due_date, payment.charge_payment), [])
        for item in rows:
            if remaining <= 0:
                break
            interest, principal = item.apply(remaining)
            remaining = round2(remaining - interest - principal)

        if remaining > TOLERANCE:
            logger.warning(
                "Payment %s has %s not matched to any installment due %s",
                payment.id, remaining, payment.due_date.isoformat()
            )

    return progress


def find_current_due(installments: Iterable[Installment],
                     progress: Dict[str, InstallmentProgress]) -> Optional[Installment]:
    """First open item by due date with more than the tolerance outstanding"""
    candidates = sorted(
        (row for row in installments if row.is_open),
        key=lambda row: (row.due_date, row.installment_number)
    )
    for row in candidates:
        if progress[row.id].outstanding > TOLERANCE:
            return row
    return None


def allocate_payment(amount, installment: Installment, progress: InstallmentProgress,
                     allow_excess: bool = False) -> AllocationResult:
    """
    Split `amount` between the interest and principal of `installment`

    Charges carry no interest, so everything goes to principal. Regular
    installments take interest first and the rest goes to principal up to
    what is still due.

    Args:
        amount: Positive payment amount
        installment: The current due item
        progress: What earlier payments already covered on this item
        allow_excess: Report an amount above the outstanding balance as
            `applies_to_next` instead of rejecting it

    Raises:
        ValidationError: amount is not positive, or exceeds the outstanding
            balance and allow_excess is not set
    """
    amount = round2(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")

    interest_due = progress.interest_due
    principal_due = progress.principal_due
    outstanding = progress.outstanding

    if amount > outstanding + TOLERANCE and not allow_excess:
        raise ValidationError(
            f"Payment {amount} exceeds the {outstanding} outstanding on installment "
            f"{installment.installment_number} due {installment.due_date.isoformat()}"
        )

    if installment.is_charge:
        interest_applied = ZERO
    else:
        interest_applied = min(amount, interest_due)
    principal_applied = min(round2(amount - interest_applied), principal_due)
    applies_to_next = max(ZERO, round2(amount - interest_applied - principal_applied))
    remaining_after = round2(outstanding - interest_applied - principal_applied)

    return AllocationResult(
        installment_id=installment.id,
        installment_number=installment.installment_number,
        due_date=installment.due_date,
        is_charge=installment.is_charge,
        amount=amount,
        interest_applied=interest_applied,
        principal_applied=principal_applied,
        applies_to_next=applies_to_next,
        interest_due=interest_due,
        principal_due=principal_due,
        remaining_after=remaining_after,
        completes_installment=remaining_after <= TOLERANCE
    )


def validate_payment_request(amount, late_fee_amount) -> Tuple[Decimal, Decimal]:
    """Reject negative amounts and requests that pay nothing"""
    amount = round2(to_decimal(amount))
    late_fee_amount = round2(to_decimal(late_fee_amount))
    if amount < 0:
        raise ValidationError("Payment amount cannot be negative")
    if late_fee_amount < 0:
        raise ValidationError("Late fee amount cannot be negative")
    if amount == 0 and late_fee_amount == 0:
        raise ValidationError("Payment must include a principal/interest or late fee amount")
    return amount, late_fee_amount
