"""
Shared data structures for the application.
"""
import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

__all__ = ["Action", "PriceRecord", "TradeRecord"]


class Action(str, Enum):
    """The decision taken on a single trading day."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class PriceRecord(BaseModel):
    """
    A single daily closing price.
    """

    model_config = ConfigDict(frozen=True)

    date: datetime.date = Field(..., description="The trading day.")
    price: float = Field(..., gt=0, description="The adjusted closing price.")


class TradeRecord(BaseModel):
    """
    The outcome of one simulated trading day.

    `cash_flow` is negative for purchases and positive for sales.
    `shares_held` is the running position after the day's action.
    """

    model_config = ConfigDict(frozen=True)

    date: datetime.date = Field(..., description="The trading day.")
    price: float = Field(..., gt=0, description="The price the action was taken at.")
    action: Action = Field(..., description="BUY, SELL or HOLD.")
    cash_flow: float = Field(0.0, description="Signed cash moved by the action.")
    shares_held: float = Field(..., ge=0, description="Shares owned after the action.")
