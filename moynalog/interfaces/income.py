"""
Income (receipt) interfaces.

Field names follow Python's snake_case convention. The as_dict() method
on each model handles the translation to camelCase for the wire format.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class IncomeType(str, enum.Enum):
    FROM_INDIVIDUAL = "FROM_INDIVIDUAL"
    FROM_LEGAL_ENTITY = "FROM_LEGAL_ENTITY"
    FROM_FOREIGN_AGENCY = "FROM_FOREIGN_AGENCY"


class PaymentType(str, enum.Enum):
    CASH = "CASH"
    ACCOUNT = "ACCOUNT"


class CancelReason(str, enum.Enum):
    CANCEL = "CANCEL"
    REFUND = "REFUND"

    @property
    def text(self) -> str:
        """Comment sent to the API when the caller supplies none."""
        return _CANCEL_REASON_TEXT[self]


_CANCEL_REASON_TEXT = {
    CancelReason.CANCEL: "Чек сформирован ошибочно",
    CancelReason.REFUND: "Возврат средств",
}


@dataclass
class IncomeClient:
    """The buyer of the goods or services."""

    income_type: IncomeType = IncomeType.FROM_INDIVIDUAL
    display_name: Optional[str] = None
    contact_phone: Optional[str] = None
    inn: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "incomeType": IncomeType(self.income_type).value,
            "displayName": self.display_name or None,
            "contactPhone": self.contact_phone or None,
            "inn": self.inn or None,
        }


@dataclass
class IncomeService:
    """A single line item within a receipt."""

    name: str
    amount: float
    quantity: int = 1

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name is required")
        if self.amount < 0:
            raise ValueError("amount must be non-negative")
        if self.quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {self.quantity}")

    @property
    def total(self) -> float:
        return self.amount * self.quantity

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "amount": format_amount(self.amount),
            "quantity": self.quantity,
        }


@dataclass
class CreateIncomeParams:
    """Parameters for a single-item receipt."""

    name: str
    amount: float
    quantity: int = 1
    operation_time: Optional[datetime] = None
    payment_type: PaymentType = PaymentType.CASH
    client: Optional[IncomeClient] = None
    ignore_max_total_income_restriction: bool = False

    def to_multiple(self) -> CreateMultipleIncomeParams:
        return CreateMultipleIncomeParams(
            services=[IncomeService(self.name, self.amount, self.quantity)],
            operation_time=self.operation_time,
            payment_type=self.payment_type,
            client=self.client,
            ignore_max_total_income_restriction=self.ignore_max_total_income_restriction,
        )


@dataclass
class CreateMultipleIncomeParams:
    """Parameters for a receipt with several line items."""

    services: List[IncomeService]
    operation_time: Optional[datetime] = None
    payment_type: PaymentType = PaymentType.CASH
    client: Optional[IncomeClient] = None
    ignore_max_total_income_restriction: bool = False

    def __post_init__(self) -> None:
        if not self.services:
            raise ValueError("at least one service is required")

    @property
    def total_amount(self) -> float:
        return sum(s.total for s in self.services)


@dataclass
class CancelIncomeParams:
    """Parameters for cancelling a previously issued receipt."""

    receipt_uuid: str
    reason: CancelReason
    comment: Optional[str] = None
    operation_time: Optional[datetime] = None
    request_time: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.receipt_uuid:
            raise ValueError("receipt_uuid is required")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


@dataclass
class IncomeResult:
    """API response for income registration or cancellation."""

    approved_receipt_uuid: Optional[str] = None
    name: Optional[str] = None
    amount: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> IncomeResult:
        raw = raw or {}
        return cls(
            approved_receipt_uuid=raw.get("approvedReceiptUuid"),
            name=raw.get("name"),
            amount=raw.get("amount"),
            raw=raw,
        )


@dataclass
class Receipt:
    """Identifier of an issued receipt plus its canonical URLs."""

    receipt_uuid: str
    print_url: str
    json_url: str


def format_amount(amount: float) -> str:
    # The API wants a decimal string in roubles; whole amounts go without ".0".
    amount = round(float(amount), 2)
    if amount.is_integer():
        return str(int(amount))
    return str(amount)
