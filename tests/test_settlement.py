"""
Test suite for early settlement
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from loan_ledger.balance import reconstruct_balance
from loan_ledger.errors import PreconditionError, ValidationError
from loan_ledger.late_fees import compute_late_fee_breakdown
from loan_ledger.models import (
    AmortizationType, LateFeeCalculationType, LateFeeConfig, Loan, PaymentFrequency
)
from loan_ledger.schedule import build_charge, generate_schedule
from loan_ledger.settlement import compute_settlement, validate_settlement


class TestSettlement:
    """Test settlement breakdown and validation"""

    def setup_method(self):
        """Set up test fixtures"""
        now = datetime.now(timezone.utc)
        self.loan = Loan(
            id="LOAN001",
            created_at=now,
            updated_at=now,
            amount=Decimal('3000'),
            interest_rate=Decimal('2'),
            term=3,
            amortization_type=AmortizationType.SIMPLE,
            payment_frequency=PaymentFrequency.MONTHLY,
            start_date=date(2024, 1, 1),
            late_fee=LateFeeConfig(enabled=True, rate=Decimal('1'),
                                   calculation_type=LateFeeCalculationType.DAILY)
        )
        self.rows = generate_schedule(self.loan)
        self.rows.append(build_charge(self.loan, self.rows, Decimal('150'), date(2024, 4, 15)))
        self.as_of = date(2024, 3, 11)

        snapshot = reconstruct_balance(self.loan, self.rows, [])
        late_fees = compute_late_fee_breakdown(self.loan, self.rows, self.as_of)
        self.breakdown = compute_settlement(snapshot, late_fees)

    def test_breakdown(self):
        """Test capital includes open charges"""
        assert self.breakdown.as_of == self.as_of
        assert self.breakdown.capital_pending == Decimal('3150.00')
        assert self.breakdown.interest_pending == Decimal('180.00')
        assert self.breakdown.late_fee_pending == Decimal('490.00')
        assert self.breakdown.total_to_settle == Decimal('3820.00')

    def test_forgive_interest_and_late_fee(self):
        """Test interest and late fees may be waived"""
        amounts = validate_settlement(self.breakdown, Decimal('3150'))

        assert amounts.total == Decimal('3150.00')
        assert amounts.interest_forgiven == Decimal('180.00')
        assert amounts.late_fee_forgiven == Decimal('490.00')

    def test_partial_forgiveness(self):
        """Test paying part of the interest"""
        amounts = validate_settlement(self.breakdown, Decimal('3150'), Decimal('100'), Decimal('490'))

        assert amounts.total == Decimal('3740.00')
        assert amounts.interest_forgiven == Decimal('80.00')
        assert amounts.late_fee_forgiven == Decimal('0')

    def test_short_capital(self):
        """Test capital must be paid in full"""
        with pytest.raises(PreconditionError):
            validate_settlement(self.breakdown, Decimal('3000'))

    def test_excess_components(self):
        """Test no component may exceed what is pending"""
        with pytest.raises(ValidationError):
            validate_settlement(self.breakdown, Decimal('3200'))
        with pytest.raises(ValidationError):
            validate_settlement(self.breakdown, Decimal('3150'), interest=Decimal('200'))
        with pytest.raises(ValidationError):
            validate_settlement(self.breakdown, Decimal('3150'), late_fee=Decimal('500'))

    def test_negative_component(self):
        """Test negative amounts are rejected"""
        with pytest.raises(ValidationError):
            validate_settlement(self.breakdown, Decimal('3150'), interest=Decimal('-1'))
