"""
Installment Schedule Module

Generates the installment rows of a loan, extends the interest-only schedule
of indefinite loans as time passes, and builds ad-hoc charge rows.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from .dates import add_period
from .errors import ValidationError
from .models import AmortizationType, Installment, Loan
from .money import ZERO, approx_zero, round2, split_evenly, to_decimal


def period_interest(principal: Decimal, rate: Decimal) -> Decimal:
    """Interest for one payment period at `rate` percent"""
    return round2(to_decimal(principal) * to_decimal(rate) / Decimal('100'))


def first_due_date(loan: Loan) -> date:
    """One payment period after the loan start date"""
    return add_period(loan.start_date, loan.payment_frequency, 1)


def generate_schedule(loan: Loan, first_due: Optional[date] = None) -> List[Installment]:
    """
    Generate the installment rows for a new loan

    Args:
        loan: Loan whose amount, rate, term and amortization type drive the schedule
        first_due: Due date of installment 1 (defaults to one period after start)

    Returns:
        Installments ordered by number; principal shares reconcile to the loan amount
    """
    first_due = first_due or first_due_date(loan)

    if loan.amortization_type == AmortizationType.INDEFINITE:
        return [Installment.create(loan.id, 1, first_due, ZERO,
                                   period_interest(loan.amount, loan.interest_rate))]

    if loan.term < 1:
        raise ValidationError("Scheduled loans need a term of at least one period")

    if loan.amortization_type == AmortizationType.SIMPLE:
        principals = split_evenly(loan.amount, loan.term)
        interest = period_interest(loan.amount, loan.interest_rate)
        interests = [interest] * loan.term
    elif loan.amortization_type == AmortizationType.FRENCH:
        principals, interests = french_amounts(loan.amount, loan.interest_rate, loan.term)
    else:
        raise ValueError(f"Unsupported amortization type: {loan.amortization_type}")

    return [
        Installment.create(loan.id, number, add_period(first_due, loan.payment_frequency, number - 1),
                           principal, interest)
        for number, (principal, interest) in enumerate(zip(principals, interests), start=1)
    ]


def french_amounts(amount: Decimal, rate: Decimal, term: int):
    """Equal payments with interest on the declining balance"""
    r = to_decimal(rate) / Decimal('100')
    if r == 0:
        return split_evenly(amount, term), [ZERO] * term

    # Standard annuity formula: P * r / (1 - (1 + r)^-n)
    payment = round2(amount * r / (Decimal('1') - (Decimal('1') + r) ** -term))

    principals, interests = [], []
    balance = round2(amount)
    for number in range(1, term + 1):
        interest = round2(balance * r)
        if number == term:
            principal = balance
        else:
            principal = min(round2(payment - interest), balance)
        principals.append(principal)
        interests.append(interest)
        balance = round2(balance - principal)
    return principals, interests


def french_amounts_at_payment(amount: Decimal, rate: Decimal, payment: Decimal, max_term: int):
    """
    Amortize `amount` at a fixed payment with interest on the declining balance

    Stops as soon as the balance is repaid, so fewer than `max_term` rows may
    come back. The last row absorbs whatever remains.
    """
    r = to_decimal(rate) / Decimal('100')
    payment = round2(payment)
    principals, interests = [], []
    balance = round2(amount)
    while balance > 0 and len(principals) < max_term:
        interest = round2(balance * r)
        if len(principals) == max_term - 1 or balance + interest <= payment:
            principal = balance
        else:
            principal = round2(payment - interest)
            if principal <= 0:
                raise ValidationError(f"Payment {payment} does not cover the period interest {interest}")
        principals.append(principal)
        interests.append(interest)
        balance = round2(balance - principal)
    return principals, interests


def next_installment_number(installments: List[Installment]) -> int:
    return max((row.installment_number for row in installments), default=0) + 1


def extend_indefinite_schedule(loan: Loan, installments: List[Installment],
                               as_of: date) -> List[Installment]:
    """
    Append interest-only rows to an indefinite loan

    Rows are added until an open regular row exists and the latest regular
    row is due after `as_of`. Existing due dates are never duplicated.

    Returns:
        Only the newly created rows
    """
    if not loan.is_indefinite or loan.is_closed or approx_zero(loan.amount):
        return []

    regular = [row for row in installments if not row.is_charge]
    interest = period_interest(loan.amount, loan.interest_rate)
    number = next_installment_number(installments)
    taken = {row.due_date for row in regular}
    new_rows: List[Installment] = []

    last_due = max((row.due_date for row in regular), default=None)
    has_open = any(row.is_open for row in regular)

    if last_due is None:
        last_due = first_due_date(loan)
        new_rows.append(Installment.create(loan.id, number, last_due, ZERO, interest))
        number += 1
        has_open = True

    while not has_open or last_due <= as_of:
        last_due = add_period(last_due, loan.payment_frequency, 1)
        if last_due in taken:
            continue
        new_rows.append(Installment.create(loan.id, number, last_due, ZERO, interest))
        number += 1
        has_open = True

    return new_rows


def build_charge(loan: Loan, installments: List[Installment], amount, due_date: date,
                 description: Optional[str] = None) -> Installment:
    """Create an ad-hoc charge row with the next sequence number"""
    amount = round2(amount)
    if amount <= 0:
        raise ValidationError("Charge amount must be positive")
    return Installment.create(loan.id, next_installment_number(installments), due_date,
                              amount, ZERO, is_charge=True, description=description)
