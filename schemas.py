from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AccountType
from money import MAX_AMOUNT

COLOR_PATTERN = r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$"
DEFAULT_TAG_COLOR = "#3b82f6"


class AccountIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance: Decimal = Field(
        default=Decimal("0"),
        ge=-MAX_AMOUNT,
        le=MAX_AMOUNT,
        max_digits=14,
        decimal_places=2,
    )


class AccountUpdate(BaseModel):
    """Partial account edit. ``balance`` sets a new target balance."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    balance: Optional[Decimal] = Field(
        default=None,
        ge=-MAX_AMOUNT,
        le=MAX_AMOUNT,
        max_digits=14,
        decimal_places=2,
    )


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    account_id: int
    amount: Decimal = Field(
        ..., ge=-MAX_AMOUNT, le=MAX_AMOUNT, max_digits=14, decimal_places=2
    )
    description: str = Field(..., min_length=1, max_length=200)
    transaction_date: Optional[date] = None
    tag_ids: list[int] = Field(default_factory=list)


class TransactionUpdate(BaseModel):
    """Partial transaction edit. ``tag_ids=None`` leaves the tag set alone."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    account_id: Optional[int] = None
    amount: Optional[Decimal] = Field(
        default=None,
        ge=-MAX_AMOUNT,
        le=MAX_AMOUNT,
        max_digits=14,
        decimal_places=2,
    )
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    transaction_date: Optional[date] = None
    tag_ids: Optional[list[int]] = None


class TagIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(default=DEFAULT_TAG_COLOR, pattern=COLOR_PATTERN)


class TagUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)


class TagSetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tag_ids: list[int] = Field(default_factory=list)


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType
    balance: Decimal
    opening_balance: Decimal
    created_at: datetime


class TagOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: str
    created_at: datetime


class TagRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: str


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    amount: Decimal
    description: str
    transaction_date: date
    created_at: datetime
    tags: list[TagRef] = Field(default_factory=list)


class TagUsage(BaseModel):
    id: int
    name: str
    color: str
    count: int


class LedgerSummary(BaseModel):
    income: Decimal
    expenses: Decimal
    net: Decimal
    income_count: int
    expense_count: int
    tag_usage: list[TagUsage] = Field(default_factory=list)


class BalanceDrift(BaseModel):
    account_id: int
    name: str
    stored: Decimal
    derived: Decimal


class Outcome(BaseModel):
    """Result of one use case: ``{success, entity}`` or ``{success, error_kind, message}``."""

    success: bool
    entity: Optional[Any] = None
    error_kind: Optional[
        Literal["validation", "not_found", "consistency", "infrastructure"]
    ] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, entity: Any = None) -> "Outcome":
        return cls(success=True, entity=entity)

    @classmethod
    def fail(cls, error_kind: str, message: str) -> "Outcome":
        return cls(success=False, error_kind=error_kind, message=message)

    def as_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "entity": _dump(self.entity)}
        return {
            "success": False,
            "error_kind": self.error_kind,
            "message": self.message,
        }


def _dump(entity: Any) -> Any:
    if isinstance(entity, BaseModel):
        return entity.model_dump(mode="json")
    if isinstance(entity, list):
        return [_dump(item) for item in entity]
    return entity
