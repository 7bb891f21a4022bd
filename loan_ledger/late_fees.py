"""
Late Fee Module

Computes the penalty accrued by each overdue installment under the loan's
late fee configuration and spreads late fee payments and waivers over the
installments that accrued it.

Fees are recomputed from the due date and the as-of date every time. What has
been collected or waived is tracked per installment in `late_fee_paid`, so the
outstanding fee of an installment is the recomputed fee minus that amount.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from .dates import days_between
from .errors import ValidationError
from .models import Installment, LateFeeCalculationType, LateFeeConfig, Loan
from .money import TOLERANCE, ZERO, approx_zero, reconcile_last, round2, to_decimal

HUNDRED = Decimal('100')
DAYS_PER_MONTH = 30


@dataclass
class InstallmentLateFee:
    """Late fee position of one installment"""
    installment_id: str
    installment_number: int
    due_date: date
    days_overdue: int
    basis: Decimal
    late_fee: Decimal          # Fee accrued to date, before anything collected
    late_fee_paid: Decimal
    remaining: Decimal         # Still owed
    is_paid: bool = False
    is_charge: bool = False


@dataclass
class LateFeeBreakdown:
    """Per-installment late fees of a loan"""
    as_of: date
    total_late_fee: Decimal
    items: List[InstallmentLateFee] = field(default_factory=list)

    @property
    def overdue_items(self) -> List[InstallmentLateFee]:
        return [item for item in self.items if item.remaining > 0]


def calculate_late_fee(basis, due_date: date, config: LateFeeConfig,
                       as_of: date) -> Tuple[int, Decimal]:
    """
    Late fee accrued on `basis` for an item due on `due_date`

    Returns:
        (days overdue after the grace period, fee rounded to cents)
    """
    if not config.enabled or not config.rate:
        return 0, ZERO

    days_overdue = max(0, days_between(as_of, due_date) - (config.grace_period_days or 0))
    if days_overdue <= 0:
        return 0, ZERO

    basis = to_decimal(basis)
    rate = to_decimal(config.rate) / HUNDRED

    if config.calculation_type == LateFeeCalculationType.MONTHLY:
        months_overdue = -(-days_overdue // DAYS_PER_MONTH)
        fee = basis * rate * months_overdue
    elif config.calculation_type == LateFeeCalculationType.COMPOUND:
        fee = basis * ((Decimal('1') + rate) ** days_overdue - Decimal('1'))
    else:
        fee = basis * rate * days_overdue

    if config.max_late_fee and config.max_late_fee > 0:
        fee = min(fee, to_decimal(config.max_late_fee))

    return days_overdue, round2(fee)


def installment_late_fee(installment: Installment, config: LateFeeConfig,
                         as_of: date) -> InstallmentLateFee:
    """Late fee position of one installment; closed rows accrue nothing"""
    if installment.is_open:
        days_overdue, fee = calculate_late_fee(installment.late_fee_basis, installment.due_date,
                                               config, as_of)
    else:
        days_overdue, fee = 0, ZERO

    return InstallmentLateFee(
        installment_id=installment.id,
        installment_number=installment.installment_number,
        due_date=installment.due_date,
        days_overdue=days_overdue,
        basis=installment.late_fee_basis,
        late_fee=fee,
        late_fee_paid=installment.late_fee_paid,
        remaining=max(ZERO, round2(fee - installment.late_fee_paid)),
        is_paid=not installment.is_open,
        is_charge=installment.is_charge
    )


def compute_late_fee_breakdown(loan: Loan, installments: Iterable[Installment],
                               as_of: date) -> LateFeeBreakdown:
    """Late fees of every installment of the loan as of `as_of`, oldest first"""
    rows = sorted(installments, key=lambda row: (row.due_date, row.installment_number))
    items = [installment_late_fee(row, loan.late_fee, as_of) for row in rows]
    total = round2(sum((item.remaining for item in items), ZERO))
    return LateFeeBreakdown(as_of=as_of, total_late_fee=total, items=items)


def distribute_late_fee_removal(amount, breakdown: LateFeeBreakdown) -> Dict[str, Decimal]:
    """
    Spread a late fee waiver over the installments in proportion to their fee

    Each installment receives amount * its outstanding fee / total outstanding
    fee, with the cent residual on the last one.

    Returns:
        Share per installment id; empty when no installment carries a fee

    Raises:
        ValidationError: amount is not positive or exceeds the total fee
    """
    amount = round2(amount)
    if amount <= 0:
        raise ValidationError("Late fee removal amount must be positive")

    total = breakdown.total_late_fee
    if approx_zero(total):
        return {}
    if amount > total + TOLERANCE:
        raise ValidationError(f"Cannot remove {amount}: current late fee is {total}")

    items = breakdown.overdue_items
    shares = reconcile_last([amount * item.remaining / total for item in items], min(amount, total))
    return {item.installment_id: share for item, share in zip(items, shares) if share > 0}


def distribute_late_fee_payment(amount, breakdown: LateFeeBreakdown) -> Dict[str, Decimal]:
    """
    Apply a late fee payment to the oldest overdue installments first

    Raises:
        ValidationError: amount exceeds the total outstanding late fee
    """
    amount = round2(amount)
    if amount <= 0:
        return {}
    if amount > breakdown.total_late_fee + TOLERANCE:
        raise ValidationError(
            f"Late fee payment {amount} exceeds the current late fee {breakdown.total_late_fee}"
        )

    applied: Dict[str, Decimal] = {}
    remaining = min(amount, breakdown.total_late_fee)
    for item in breakdown.overdue_items:
        if remaining <= 0:
            break
        share = min(remaining, item.remaining)
        applied[item.installment_id] = share
        remaining = round2(remaining - share)
    return applied
