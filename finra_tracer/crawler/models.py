"""
Data types shared by the crawler.

Targets and trade records are immutable; the supervisor only ever hands
references to them around.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

# 검색 대상 날짜 형식 (MM/DD/YYYY)
DATE_FORMAT = "%m/%d/%Y"


@dataclass(frozen=True)
class Target:
    """One (instrument, date range) search unit.

    Attributes:
        instrument_id: FINRA security id / CUSIP-like identifier.
        start_date: First trade date, ``MM/DD/YYYY``.
        end_date: Last trade date, ``MM/DD/YYYY``.
    """

    instrument_id: str
    start_date: str
    end_date: str

    def __post_init__(self) -> None:
        if not self.instrument_id.strip():
            raise ValueError("instrument_id must not be empty")
        try:
            start = datetime.strptime(self.start_date, DATE_FORMAT)
            end = datetime.strptime(self.end_date, DATE_FORMAT)
        except ValueError as exc:
            raise ValueError(
                f"Target {self.instrument_id}: dates must be MM/DD/YYYY "
                f"(got {self.start_date!r}, {self.end_date!r})"
            ) from exc
        if start > end:
            raise ValueError(
                f"Target {self.instrument_id}: start_date {self.start_date} "
                f"is after end_date {self.end_date}"
            )

    def __str__(self) -> str:
        return f"{self.instrument_id} [{self.start_date} - {self.end_date}]"


@dataclass(frozen=True)
class TradeRecord:
    """A single reported bond trade."""

    quantity: str
    instrument_id: str
    price: Decimal
    trade_date: str
    execution_time: str

    def __str__(self) -> str:
        return (
            f"{self.trade_date} [{self.execution_time}] {self.instrument_id} "
            f"{self.price:.3f} {self.quantity}"
        )


class TradeColumn(BaseModel):
    """One entry of the ``Columns`` list on the wire.

    ``null`` or missing fields take their zero value (``""`` / ``0``) instead
    of rejecting the whole table.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    tradeQuantity: str = ""
    securityID: str = ""
    price: Decimal = Decimal(0)
    tradeDate: str = ""
    timeOfExecution: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _null_as_zero(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    def to_record(self) -> TradeRecord:
        return TradeRecord(
            quantity=self.tradeQuantity,
            instrument_id=self.securityID,
            price=self.price,
            trade_date=self.tradeDate,
            execution_time=self.timeOfExecution,
        )


class TradeTable(BaseModel):
    model_config = ConfigDict(extra="ignore")

    Columns: list[TradeColumn] = Field(default_factory=list)
    Rows: int = 0

    @field_validator("Columns", mode="before")
    @classmethod
    def _null_columns(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("Rows", mode="before")
    @classmethod
    def _null_rows(cls, value: Any) -> Any:
        return 0 if value is None else value


class TradeResponse(BaseModel):
    """Search response body, after the ``T`` key has been repaired.

    ``{"T": null}`` is read as an empty table.
    """

    model_config = ConfigDict(extra="ignore")

    T: TradeTable

    @field_validator("T", mode="before")
    @classmethod
    def _null_table(cls, value: Any) -> Any:
        return {} if value is None else value


@dataclass(frozen=True)
class ParsedTrades:
    """Result of parsing one search response body.

    ``session_expired`` is set when the body carries no trade table at all,
    which is how the endpoint answers once the session has silently lapsed.
    """

    trades: tuple[TradeRecord, ...] = ()
    rows: int = 0
    session_expired: bool = False


@dataclass(frozen=True)
class FetchOutcome:
    target: Target
    trades: tuple[TradeRecord, ...] = field(default_factory=tuple)
    session_expired: bool = False
