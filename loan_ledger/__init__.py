"""
Loan Ledger

Embedded loan-ledger core: payment allocation, late-fee accrual, prepayment
restructuring, settlement and balance reconstruction. All financial math uses
Decimal and every balance is re-derived from installment and payment history.
"""

__version__ = "1.0.0"
