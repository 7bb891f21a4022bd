"""
Prepayment Restructuring Module

Plans how the open schedule of a loan changes after an extra principal
(capital) payment. Either the installment count is kept and every row gets
smaller, or the installment size is kept and trailing rows are dropped.
French loans are rebuilt as an annuity on the remaining principal, and
indefinite loans only get their interest-only rows recalculated.

Planning never touches storage: it works on copies of the rows and returns a
PrepaymentPlan the service persists as one unit. Charges are never part of a
restructuring; the optional penalty is added as a new charge.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal, ROUND_CEILING
from typing import List, Optional
import hashlib
import logging

from .balance import BalanceSnapshot
from .errors import PreconditionError, ReconciliationError, ValidationError
from .models import AmortizationType, Installment, Loan
from .money import TOLERANCE, ZERO, approx_zero, reconcile_last, round2, to_decimal
from .schedule import build_charge, french_amounts, french_amounts_at_payment, period_interest

logger = logging.getLogger(__name__)


@dataclass
class ScheduleChange:
    """Before/after view of one restructured row"""
    installment_id: str
    installment_number: int
    due_date: date
    old_principal: Decimal
    old_interest: Decimal
    new_principal: Decimal = ZERO
    new_interest: Decimal = ZERO
    deleted: bool = False


@dataclass
class PrepaymentPlan:
    """Everything a capital payment changes, ready to be persisted"""
    loan_id: str
    amount: Decimal
    keep_installment_count: bool
    capital_before: Decimal
    capital_after: Decimal
    idempotency_key: str
    penalty_percentage: Decimal = ZERO
    penalty_amount: Decimal = ZERO
    changes: List[ScheduleChange] = field(default_factory=list)
    updated: List[Installment] = field(default_factory=list)
    deleted: List[Installment] = field(default_factory=list)
    penalty_charge: Optional[Installment] = None
    loan_paid: bool = False

    @property
    def installment_count_before(self) -> int:
        return len(self.changes)

    @property
    def installment_count_after(self) -> int:
        return len(self.updated)


def capital_payment_key(loan_id: str, amount, capital_before, capital_after) -> str:
    """Idempotency key of a capital payment: SHA-256 over loan, amount and capitals"""
    raw = "|".join([loan_id, str(round2(amount)), str(round2(capital_before)), str(round2(capital_after))])
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


def _check_no_overdue(installments: List[Installment], snapshot: BalanceSnapshot, as_of: date) -> None:
    for row in installments:
        if not row.is_open or row.due_date >= as_of:
            continue
        if snapshot.progress[row.id].outstanding > TOLERANCE:
            raise PreconditionError(
                f"Installment {row.installment_number} due {row.due_date.isoformat()} is overdue; "
                f"bring the loan up to date before a capital payment"
            )


def _reconciliation_failed(loan: Loan, what: str, expected: Decimal, actual: Decimal) -> None:
    logger.error("Restructured schedule of loan %s does not reconcile: %s expected %s, got %s",
                 loan.id, what, expected, actual)
    raise ReconciliationError(
        f"Restructured {what} of loan {loan.id} sums to {actual}, expected {expected}"
    )


def plan_prepayment(loan: Loan, installments: List[Installment], snapshot: BalanceSnapshot,
                    amount, keep_installment_count: bool, as_of: date,
                    penalty_percentage=ZERO) -> PrepaymentPlan:
    """
    Plan a capital payment against the open schedule

    Args:
        loan: The loan being prepaid
        installments: All rows of the loan (charges are left untouched)
        snapshot: Balance reconstructed from the same rows and payments
        amount: Extra principal paid
        keep_installment_count: Shrink every installment (True) or drop
            trailing installments at the current size (False)
        as_of: Date of the payment; rows due before it must be paid
        penalty_percentage: Percent of the pre-payment principal charged as
            a separate fee

    Raises:
        ValidationError: amount not positive, above the pending principal, or
            negative penalty
        PreconditionError: overdue rows exist, or an open row is partially paid
        ReconciliationError: the new rows do not add up to the new principal
    """
    amount = round2(amount)
    penalty_percentage = to_decimal(penalty_percentage)
    if amount <= 0:
        raise ValidationError("Capital payment amount must be positive")
    if penalty_percentage < 0:
        raise ValidationError("Penalty percentage cannot be negative")

    _check_no_overdue(installments, snapshot, as_of)

    capital_before = snapshot.principal_pending
    if amount > capital_before + TOLERANCE:
        raise ValidationError(
            f"Capital payment {amount} exceeds the pending principal {capital_before}"
        )
    new_principal = max(ZERO, round2(capital_before - amount))

    open_rows = sorted(
        (replace(row) for row in installments if row.is_open and not row.is_charge),
        key=lambda row: (row.due_date, row.installment_number)
    )
    for row in open_rows:
        if snapshot.progress[row.id].has_payments:
            raise PreconditionError(
                f"Installment {row.installment_number} is partially paid; "
                f"complete it before a capital payment"
            )

    plan = PrepaymentPlan(
        loan_id=loan.id,
        amount=amount,
        keep_installment_count=keep_installment_count,
        capital_before=capital_before,
        capital_after=new_principal,
        idempotency_key=capital_payment_key(loan.id, amount, capital_before, new_principal),
        penalty_percentage=penalty_percentage,
        changes=[ScheduleChange(row.id, row.installment_number, row.due_date,
                                row.principal_amount, row.interest_amount) for row in open_rows]
    )

    if approx_zero(new_principal):
        kept: List[Installment] = []
        plan.loan_paid = True
    elif loan.is_indefinite:
        kept = open_rows
        interest = period_interest(new_principal, loan.interest_rate)
        for row in kept:
            row.set_amounts(ZERO, interest)
    elif loan.amortization_type == AmortizationType.FRENCH:
        kept = _reshape_french(loan, open_rows, new_principal, keep_installment_count)
    elif keep_installment_count:
        kept = open_rows
        _reshape(loan, kept, new_principal, period_interest(new_principal, loan.interest_rate))
    else:
        if not open_rows:
            raise PreconditionError(f"Loan {loan.id} has no open installments to restructure")
        principal_per_payment = open_rows[0].principal_amount
        if principal_per_payment <= 0:
            raise PreconditionError(
                f"Loan {loan.id} has no fixed principal per installment; keep the installment count instead"
            )
        new_count = int((new_principal / principal_per_payment).to_integral_value(rounding=ROUND_CEILING))
        kept = open_rows[:min(new_count, len(open_rows))]
        _reshape(loan, kept, new_principal, open_rows[0].interest_amount,
                 principal_per_payment=principal_per_payment)

    kept_ids = {row.id for row in kept}
    plan.updated = kept
    plan.deleted = [row for row in open_rows if row.id not in kept_ids]

    by_id = {row.id: row for row in kept}
    for change in plan.changes:
        row = by_id.get(change.installment_id)
        if row is None:
            change.deleted = True
        else:
            change.new_principal = row.principal_amount
            change.new_interest = row.interest_amount

    if penalty_percentage > 0:
        plan.penalty_amount = round2(capital_before * penalty_percentage / Decimal('100'))
        if plan.penalty_amount > 0:
            plan.penalty_charge = build_charge(loan, installments, plan.penalty_amount, as_of,
                                               description=f"Capital payment penalty ({penalty_percentage}%)")

    return plan


def _reshape_french(loan: Loan, rows: List[Installment], new_principal: Decimal,
                    keep_installment_count: bool) -> List[Installment]:
    """
    Rebuild an annuity on new_principal with interest on the declining balance

    Keeping the count spreads the new principal over the same rows. Keeping the
    size reuses the current payment and returns only the leading rows needed.
    """
    if not rows:
        raise PreconditionError(f"Loan {loan.id} has no open installments to restructure")

    if keep_installment_count:
        principals, interests = french_amounts(new_principal, loan.interest_rate, len(rows))
    else:
        principals, interests = french_amounts_at_payment(new_principal, loan.interest_rate,
                                                          rows[0].total_amount, len(rows))

    kept = rows[:len(principals)]
    for row, principal, interest in zip(kept, principals, interests):
        row.set_amounts(principal, interest)

    principal_total = round2(sum((row.principal_amount for row in kept), ZERO))
    if principal_total != round2(new_principal):
        _reconciliation_failed(loan, "principal", round2(new_principal), principal_total)
    return kept


def _reshape(loan: Loan, rows: List[Installment], new_principal: Decimal, interest_per_payment: Decimal,
             principal_per_payment: Optional[Decimal] = None) -> None:
    """Rewrite rows in place so their principal reconciles exactly to new_principal"""
    count = len(rows)
    if count == 0:
        _reconciliation_failed(loan, "principal", new_principal, ZERO)

    if principal_per_payment is None:
        principal_per_payment = round2(new_principal / Decimal(count))
    principals = reconcile_last([principal_per_payment] * count, new_principal)
    interests = reconcile_last([interest_per_payment] * count, interest_per_payment * count)

    if principals[-1] < 0:
        _reconciliation_failed(loan, "last principal share", ZERO, principals[-1])

    for row, principal, interest in zip(rows, principals, interests):
        row.set_amounts(principal, interest)

    principal_total = round2(sum((row.principal_amount for row in rows), ZERO))
    if principal_total != round2(new_principal):
        _reconciliation_failed(loan, "principal", round2(new_principal), principal_total)
    interest_total = round2(sum((row.interest_amount for row in rows), ZERO))
    if interest_total != round2(interest_per_payment * count):
        _reconciliation_failed(loan, "interest", round2(interest_per_payment * count), interest_total)
