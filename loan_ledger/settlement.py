"""
Settlement Module

Early payoff of a loan. The payer must cover the full pending capital;
interest and late fees may be partially forgiven.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from .balance import BalanceSnapshot
from .errors import PreconditionError, ValidationError
from .late_fees import LateFeeBreakdown
from .money import TOLERANCE, ZERO, round2, to_decimal


@dataclass
class SettlementBreakdown:
    """What it takes to close a loan as of one date"""
    as_of: date
    capital_pending: Decimal      # Principal plus open charges
    interest_pending: Decimal
    late_fee_pending: Decimal
    total_to_settle: Decimal


@dataclass
class SettlementAmounts:
    """Validated amounts a payer settles with"""
    capital: Decimal
    interest: Decimal
    late_fee: Decimal
    interest_forgiven: Decimal
    late_fee_forgiven: Decimal

    @property
    def total(self) -> Decimal:
        return round2(self.capital + self.interest + self.late_fee)


def compute_settlement(snapshot: BalanceSnapshot, late_fees: LateFeeBreakdown) -> SettlementBreakdown:
    """Settlement breakdown from a reconstructed balance and the late fee breakdown"""
    capital = round2(snapshot.principal_pending + snapshot.charges_pending)
    interest = snapshot.interest_pending
    late_fee = late_fees.total_late_fee
    return SettlementBreakdown(
        as_of=late_fees.as_of,
        capital_pending=capital,
        interest_pending=interest,
        late_fee_pending=late_fee,
        total_to_settle=round2(capital + interest + late_fee)
    )


def validate_settlement(breakdown: SettlementBreakdown, capital, interest=ZERO,
                        late_fee=ZERO) -> SettlementAmounts:
    """
    Check requested settlement amounts against the breakdown

    Raises:
        ValidationError: a negative component, or one above its pending amount
        PreconditionError: capital below the pending capital
    """
    capital = round2(to_decimal(capital))
    interest = round2(to_decimal(interest))
    late_fee = round2(to_decimal(late_fee))

    for name, value in (("capital", capital), ("interest", interest), ("late fee", late_fee)):
        if value < 0:
            raise ValidationError(f"Settlement {name} cannot be negative")

    if capital < breakdown.capital_pending - TOLERANCE:
        raise PreconditionError(
            f"Settlement must pay the full capital of {breakdown.capital_pending}, got {capital}"
        )
    if capital > breakdown.capital_pending + TOLERANCE:
        raise ValidationError(
            f"Settlement capital {capital} exceeds the pending capital {breakdown.capital_pending}"
        )
    if interest > breakdown.interest_pending + TOLERANCE:
        raise ValidationError(
            f"Settlement interest {interest} exceeds the pending interest {breakdown.interest_pending}"
        )
    if late_fee > breakdown.late_fee_pending + TOLERANCE:
        raise ValidationError(
            f"Settlement late fee {late_fee} exceeds the pending late fee {breakdown.late_fee_pending}"
        )

    return SettlementAmounts(
        capital=capital,
        interest=interest,
        late_fee=late_fee,
        interest_forgiven=max(ZERO, round2(breakdown.interest_pending - interest)),
        late_fee_forgiven=max(ZERO, round2(breakdown.late_fee_pending - late_fee))
    )
