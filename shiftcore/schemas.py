from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from .enums import ShiftStatus, SwapType
from .utils import format_hhmm


class ShiftCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    department: str = Field(min_length=1, max_length=100)
    day: date
    start_time: str
    end_time: str
    required_credential_ids: list[int] = Field(default_factory=list)
    is_emergency: bool = False
    incentive_amount: Decimal = Field(default=Decimal("0"), ge=0)
    incentive_description: Optional[str] = Field(default=None, max_length=500)
    # pre-assigned shifts are created directly in "approved"
    assigned_worker_id: Optional[int] = None

    @field_validator("title", "department")
    @classmethod
    def strip_text(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("must not be blank")
        return s

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_time(cls, v: str) -> str:
        return format_hhmm(v)

    @model_validator(mode="after")
    def start_differs_from_end(self):
        if self.start_time == self.end_time:
            raise ValueError("start_equals_end")
        return self

    @field_validator("required_credential_ids")
    @classmethod
    def dedupe_credentials(cls, v: list[int]) -> list[int]:
        return sorted({int(x) for x in v})


class ShiftUpdate(BaseModel):
    """Partial edit; only fields explicitly set are applied."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    department: Optional[str] = Field(default=None, min_length=1, max_length=100)
    day: Optional[date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    required_credential_ids: Optional[list[int]] = None
    is_emergency: Optional[bool] = None
    incentive_amount: Optional[Decimal] = Field(default=None, ge=0)
    incentive_description: Optional[str] = Field(default=None, max_length=500)
    # explicit None unassigns
    assigned_worker_id: Optional[int] = None
    status: Optional[ShiftStatus] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_time(cls, v: Optional[str]) -> Optional[str]:
        return format_hhmm(v) if v is not None else None

    @field_validator("required_credential_ids")
    @classmethod
    def dedupe_credentials(cls, v: Optional[list[int]]) -> Optional[list[int]]:
        return sorted({int(x) for x in v}) if v is not None else None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class SwapRequestCreate(BaseModel):
    swap_type: SwapType = SwapType.COVERAGE
    reason: str = Field(min_length=1, max_length=1000)
    response_deadline: Optional[datetime] = None

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("must not be blank")
        return s
