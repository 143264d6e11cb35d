from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

Side = Literal["BUY", "SELL"]


class Trade(BaseModel):
    """A historical trade made by a followed wallet. Never mutated."""

    model_config = {"from_attributes": True, "frozen": True}

    wallet_address: str
    condition_id: str
    token_id: str
    side: Side
    outcome: str
    size: float = Field(ge=0.0)
    price: float = Field(ge=0.0, le=1.0)
    usdc_size: Optional[float] = Field(default=None, ge=0.0)
    timestamp: datetime
    tx_hash: Optional[str] = None
    market_title: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @computed_field
    @property
    def notional(self) -> float:
        if self.usdc_size:
            return self.usdc_size
        return self.size * self.price

    @property
    def trade_date(self) -> str:
        return self.timestamp.date().isoformat()

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "condition_id": self.condition_id,
            "token_id": self.token_id,
            "side": self.side,
            "outcome": self.outcome,
            "size": self.size,
            "price": self.price,
            "usdc_size": self.usdc_size,
            "timestamp": self.timestamp.isoformat(),
            "tx_hash": self.tx_hash,
            "market_title": self.market_title,
        }
