"""
Ledger Persistence Module

The persistence collaborator the ledger core reads from and writes to. The
core never touches storage directly: it goes through LedgerPersistence, and
StorageLedgerPersistence maps those calls onto any StorageInterface backend.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .models import CapitalPayment, Installment, Loan, Payment
from .storage import StorageInterface


class LedgerPersistence(ABC):
    """Storage operations consumed by the ledger core"""

    @abstractmethod
    def get_loan(self, loan_id: str) -> Optional[Loan]:
        pass

    @abstractmethod
    def save_loan(self, loan: Loan) -> None:
        pass

    @abstractmethod
    def update_loan(self, loan_id: str, fields: Dict[str, Any]) -> Loan:
        """Apply a partial update to a loan and return the stored result"""
        pass

    @abstractmethod
    def list_installments(self, loan_id: str) -> List[Installment]:
        pass

    @abstractmethod
    def list_payments(self, loan_id: str) -> List[Payment]:
        pass

    @abstractmethod
    def list_capital_payments(self, loan_id: str) -> List[CapitalPayment]:
        pass

    @abstractmethod
    def upsert_installments(self, rows: Iterable[Installment]) -> None:
        pass

    @abstractmethod
    def delete_installments(self, ids: Iterable[str]) -> None:
        pass

    @abstractmethod
    def insert_payment(self, row: Payment) -> None:
        pass

    @abstractmethod
    def insert_capital_payment(self, row: CapitalPayment) -> None:
        pass

    def find_capital_payment(self, loan_id: str, idempotency_key: str,
                             since: datetime) -> Optional[CapitalPayment]:
        """Most recent capital payment with this key created at or after `since`"""
        matches = [
            cp for cp in self.list_capital_payments(loan_id)
            if cp.idempotency_key == idempotency_key and cp.created_at >= since
        ]
        if not matches:
            return None
        return max(matches, key=lambda cp: cp.created_at)

    @contextmanager
    def atomic(self):
        """Group writes so they persist together (default: no grouping)"""
        yield


class StorageLedgerPersistence(LedgerPersistence):
    """LedgerPersistence backed by a StorageInterface"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"
        self.installments_table = "installments"
        self.payments_table = "payments"
        self.capital_payments_table = "capital_payments"

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def update_loan(self, loan_id: str, fields: Dict[str, Any]) -> Loan:
        data = self.storage.load(self.loans_table, loan_id)
        if data is None:
            raise KeyError(f"Loan {loan_id} not found")
        loan = Loan.from_dict(data)
        for key, value in fields.items():
            if not hasattr(loan, key):
                raise AttributeError(f"Loan has no field {key!r}")
            setattr(loan, key, value)
        self.save_loan(loan)
        return loan

    def list_installments(self, loan_id: str) -> List[Installment]:
        rows = [Installment.from_dict(data)
                for data in self.storage.find(self.installments_table, {'loan_id': loan_id})]
        rows.sort(key=lambda row: (row.due_date, row.installment_number))
        return rows

    def list_payments(self, loan_id: str) -> List[Payment]:
        rows = [Payment.from_dict(data)
                for data in self.storage.find(self.payments_table, {'loan_id': loan_id})]
        rows.sort(key=lambda row: (row.payment_date, row.created_at))
        return rows

    def list_capital_payments(self, loan_id: str) -> List[CapitalPayment]:
        rows = [CapitalPayment.from_dict(data)
                for data in self.storage.find(self.capital_payments_table, {'loan_id': loan_id})]
        rows.sort(key=lambda row: row.created_at)
        return rows

    def upsert_installments(self, rows: Iterable[Installment]) -> None:
        for row in rows:
            self.storage.save(self.installments_table, row.id, row.to_dict())

    def delete_installments(self, ids: Iterable[str]) -> None:
        for installment_id in ids:
            self.storage.delete(self.installments_table, installment_id)

    def insert_payment(self, row: Payment) -> None:
        if self.storage.exists(self.payments_table, row.id):
            raise ValueError(f"Payment {row.id} already exists")
        self.storage.save(self.payments_table, row.id, row.to_dict())

    def insert_capital_payment(self, row: CapitalPayment) -> None:
        if self.storage.exists(self.capital_payments_table, row.id):
            raise ValueError(f"Capital payment {row.id} already exists")
        self.storage.save(self.capital_payments_table, row.id, row.to_dict())

    @contextmanager
    def atomic(self):
        with self.storage.atomic():
            yield
