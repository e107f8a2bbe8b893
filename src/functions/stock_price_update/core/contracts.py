"""Contracts for stock price update requests and quotes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class StockQuote(BaseModel):
    """Price scraped for one stock or fund code."""

    code: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    name: Optional[str] = Field(default=None)
    source: str = Field(..., description="Name of the quote source that answered")
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def as_row(self) -> dict:
        """Values written into the holdings row for this code."""
        row = {
            "code": self.code,
            "price": self.price,
            "price_source": self.source,
            "price_updated_at": self.fetched_at.isoformat(),
        }
        if self.name:
            row["name"] = self.name
        return row


class UpdateRequest(BaseModel):
    """Validated payload for the update handler and CLI."""

    action: Literal["run", "resume", "cancel", "status", "clear"] = Field(default="run")
    codes: list[str] = Field(default_factory=list, description="Restrict the run to these codes")
    process_id: Optional[str] = Field(default=None)
    restart: bool = Field(default=False)
    batch_size: Optional[int] = Field(default=None, ge=1)
    soft_time_limit: Optional[float] = Field(default=None, gt=0)
    item_delay: Optional[float] = Field(default=None, ge=0)
    batch_delay: Optional[float] = Field(default=None, ge=0)
    max_retries: Optional[int] = Field(default=None, ge=0)

    @field_validator("codes")
    @classmethod
    def _clean_codes(cls, codes: list[str]) -> list[str]:
        cleaned = []
        for code in codes:
            text = str(code).strip()
            if text and text not in cleaned:
                cleaned.append(text)
        return cleaned

    def batch_overrides(self) -> dict:
        return {
            "batch_size": self.batch_size,
            "soft_time_limit": self.soft_time_limit,
            "item_delay": self.item_delay,
            "batch_delay": self.batch_delay,
            "max_retries": self.max_retries,
        }
