"""
Change Timeline Module

Orders heterogeneous loan mutations (term variations, charges, transactions)
for deterministic replay.

Two comparison bases are used on purpose:
- charges and transactions replay in recording order: submitted-on date,
  then creation timestamp, then effective date;
- a term variation is placed by its applicable-from date against the other
  operation's effective date, and wins same-day ties.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Iterable, Iterator, List, Optional, Union
from enum import Enum
import uuid

from .charges import LoanCharge
from .rate_math import to_decimal


@dataclass(frozen=True)
class TermVariation:
    """Change of loan terms (interest rate) applying from a date"""
    applicable_from: date
    annual_nominal_interest_rate: Decimal
    id: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'annual_nominal_interest_rate', to_decimal(self.annual_nominal_interest_rate))
        if self.annual_nominal_interest_rate < Decimal('0'):
            raise ValueError("Interest rate cannot be negative")


@dataclass(frozen=True)
class LoanTransaction:
    """Repayment received against the loan"""
    amount: Decimal
    transaction_date: date
    submitted_on: date
    created_at: Optional[datetime]
    id: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_decimal(self.amount))
        if self.amount <= Decimal('0'):
            raise ValueError("Transaction amount must be positive")


class ChangeOperationType(Enum):
    """Kinds of loan mutation"""
    TERM_VARIATION = "term_variation"
    CHARGE = "charge"
    TRANSACTION = "transaction"


ChangeSource = Union[TermVariation, LoanCharge, LoanTransaction]


def _sign(a, b) -> int:
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


@dataclass(frozen=True)
class ChangeOperation:
    """A term variation, charge or transaction wrapped for ordering"""
    kind: ChangeOperationType
    source: ChangeSource

    def __post_init__(self):
        expected = {
            ChangeOperationType.TERM_VARIATION: TermVariation,
            ChangeOperationType.CHARGE: LoanCharge,
            ChangeOperationType.TRANSACTION: LoanTransaction,
        }[self.kind]
        if not isinstance(self.source, expected):
            raise ValueError(f"{self.kind.value} operation requires a {expected.__name__}")

    @classmethod
    def of(cls, source: ChangeSource) -> "ChangeOperation":
        """Wrap a term variation, charge or transaction record"""
        if isinstance(source, TermVariation):
            return cls(ChangeOperationType.TERM_VARIATION, source)
        elif isinstance(source, LoanCharge):
            return cls(ChangeOperationType.CHARGE, source)
        elif isinstance(source, LoanTransaction):
            return cls(ChangeOperationType.TRANSACTION, source)
        raise ValueError(f"Unsupported change source: {type(source).__name__}")

    @property
    def is_term_variation(self) -> bool:
        return self.kind == ChangeOperationType.TERM_VARIATION

    @property
    def is_charge(self) -> bool:
        return self.kind == ChangeOperationType.CHARGE

    @property
    def is_transaction(self) -> bool:
        return self.kind == ChangeOperationType.TRANSACTION

    @property
    def effective_date(self) -> date:
        """Applicable-from, due date or transaction date depending on kind"""
        if self.is_term_variation:
            return self.source.applicable_from
        elif self.is_charge:
            return self.source.due_date
        return self.source.transaction_date

    @property
    def submitted_on(self) -> Optional[date]:
        if self.is_term_variation:
            return None
        return self.source.submitted_on

    @property
    def created_at(self) -> Optional[datetime]:
        if self.is_term_variation:
            return None
        return self.source.created_at

    def __lt__(self, other: "ChangeOperation") -> bool:
        return compare(self, other) < 0


def _compare_created_at(a: Optional[datetime], b: Optional[datetime]) -> int:
    # Missing creation timestamps sort first
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    return _sign(a, b)


def compare(a: ChangeOperation, b: ChangeOperation) -> int:
    """
    Replay order of two operations: -1 if a comes first, 1 if b does, 0 if tied.

    compare(a, b) == -compare(b, a) for every pair.
    """
    if a.is_term_variation or b.is_term_variation:
        result = _sign(a.effective_date, b.effective_date)
        if result != 0:
            return result
        if a.is_term_variation and not b.is_term_variation:
            return -1
        if b.is_term_variation and not a.is_term_variation:
            return 1
        return 0

    result = _sign(a.submitted_on, b.submitted_on)
    if result != 0:
        return result
    result = _compare_created_at(a.created_at, b.created_at)
    if result != 0:
        return result
    return _sign(a.effective_date, b.effective_date)


operation_sort_key = cmp_to_key(compare)


class ChangeTimeline:
    """
    Pending mutations of one loan.

    sorted_operations() is stable: operations that compare equal keep the
    order in which they were added.
    """

    def __init__(self, operations: Optional[Iterable[Union[ChangeOperation, ChangeSource]]] = None):
        self._operations: List[ChangeOperation] = []
        if operations:
            self.extend(operations)

    def add(self, operation: Union[ChangeOperation, ChangeSource]) -> ChangeOperation:
        """Add an operation or a raw term variation/charge/transaction record"""
        if not isinstance(operation, ChangeOperation):
            operation = ChangeOperation.of(operation)
        self._operations.append(operation)
        return operation

    def extend(self, operations: Iterable[Union[ChangeOperation, ChangeSource]]) -> None:
        for operation in operations:
            self.add(operation)

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self) -> Iterator[ChangeOperation]:
        return iter(self._operations)

    def sorted_operations(self) -> List[ChangeOperation]:
        return sorted(self._operations, key=operation_sort_key)

    def earliest_effective_date(self) -> Optional[date]:
        """Earliest date any pending operation touches"""
        if not self._operations:
            return None
        return min(operation.effective_date for operation in self._operations)
