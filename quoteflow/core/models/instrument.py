"""Instrument reference data."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, ConfigDict, Field

from quoteflow.core.models.base import QuoteflowModel


class InstrumentRef(QuoteflowModel):
    """One entry of the static instrument universe."""

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Display symbol")
    provider_symbol: str = Field(
        ...,
        validation_alias=AliasChoices("providerSymbol", "yahooSymbol", "provider_symbol"),
        description="Symbol understood by the quote provider",
    )
    series: str | None = None
    seed_price: float | None = Field(
        None,
        validation_alias=AliasChoices("seedPrice", "currentPrice", "seed_price"),
    )
    seed_updated_at: datetime | None = Field(
        None,
        validation_alias=AliasChoices("seedUpdatedAt", "lastUpdated", "seed_updated_at"),
    )

    def matches(self, symbol: str) -> bool:
        """Case-insensitive match on the provider or the display symbol."""

        wanted = symbol.upper()
        return self.provider_symbol.upper() == wanted or self.symbol.upper() == wanted
