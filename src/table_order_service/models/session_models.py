"""Entry parameters carried by a table QR code or URL."""

from pydantic import BaseModel, Field


class EntryParameters(BaseModel):
    """Parameters a diner enters the ordering flow with."""

    table_id: str = Field(..., min_length=1, description="Table identifier")
    reservation_id: str | None = Field(None, description="Reservation identifier")
    reservation_name: str | None = Field(None, description="Name the reservation was booked under")
    ai_provider: str | None = Field(None, description="AI provider override")
    language: str | None = Field(None, description="Preferred language code")
