"""
Balance Reconstruction Module

Derives the outstanding principal, interest and charges of a loan from its
installments and payment history alone. Cached balance fields on the loan are
never read here; every caller that needs a balance re-derives it.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
import logging

from .allocation import InstallmentProgress, find_current_due, replay_payments
from .errors import ReconciliationError
from .models import Installment, Loan, Payment
from .money import ZERO, approx_zero, round2

logger = logging.getLogger(__name__)


@dataclass
class BalanceSnapshot:
    """Outstanding amounts of a loan at one point of its history"""
    principal_pending: Decimal
    interest_pending: Decimal
    charges_pending: Decimal
    total_balance: Decimal
    open_installments: int
    open_charges: int
    current_due: Optional[Installment] = None
    progress: Dict[str, InstallmentProgress] = field(default_factory=dict, repr=False)

    @property
    def next_payment_date(self) -> Optional[date]:
        return self.current_due.due_date if self.current_due else None

    @property
    def is_settled(self) -> bool:
        """Nothing left to pay"""
        return approx_zero(self.total_balance) and self.current_due is None


def reconstruct_balance(loan: Loan, installments: List[Installment],
                        payments: List[Payment]) -> BalanceSnapshot:
    """
    Re-derive the balance of a loan

    Regular rows contribute what is left of their principal and interest after
    replaying the payments attributed to their due date; charges contribute
    what is left of their total. For indefinite loans the principal is the
    loan's current amount and only interest comes from the schedule.

    Raises:
        ReconciliationError: an indefinite loan has a row carrying principal
    """
    progress = replay_payments(installments, payments)

    principal = ZERO
    interest = ZERO
    charges = ZERO
    open_installments = 0
    open_charges = 0

    for row in installments:
        if not row.is_open:
            continue
        item = progress[row.id]
        if row.is_charge:
            charges += item.principal_due
            open_charges += 1
            continue

        if loan.is_indefinite and not approx_zero(row.principal_amount):
            logger.error("Indefinite loan %s has principal on installment %s",
                         loan.id, row.installment_number)
            raise ReconciliationError(
                f"Installment {row.installment_number} of indefinite loan {loan.id} carries principal"
            )
        principal += item.principal_due
        interest += item.interest_due
        open_installments += 1

    if loan.is_indefinite:
        principal = loan.amount

    principal = round2(principal)
    interest = round2(interest)
    charges = round2(charges)

    return BalanceSnapshot(
        principal_pending=principal,
        interest_pending=interest,
        charges_pending=charges,
        total_balance=round2(principal + interest + charges),
        open_installments=open_installments,
        open_charges=open_charges,
        current_due=find_current_due(installments, progress),
        progress=progress
    )
