from typing import Literal

from pydantic import BaseModel, Field

Currency = Literal["USD", "GBP"]


class Money(BaseModel):
    """An amount tagged with its currency. Converted to USD once, at the boundary."""

    model_config = {"from_attributes": True, "frozen": True}

    amount: float = Field(ge=0.0)
    currency: Currency = "USD"

    def to_usd(self, gbp_usd_rate: float) -> float:
        if self.currency == "USD":
            return self.amount
        return self.amount * gbp_usd_rate

    @staticmethod
    def convert_from_usd(amount_usd: float, currency: Currency, gbp_usd_rate: float) -> float:
        if currency == "USD":
            return amount_usd
        return amount_usd / gbp_usd_rate

    def __str__(self) -> str:
        symbol = "$" if self.currency == "USD" else "£"
        return f"{symbol}{self.amount:,.2f}"
