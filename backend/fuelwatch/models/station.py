"""Station models."""

from datetime import datetime

from pydantic import BaseModel, Field


class StationBase(BaseModel):
    """Fields shared by station input and stored records."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Station name",
    )
    location: str = Field(
        ...,
        max_length=200,
        description="Physical location",
    )
    pump_count: int | None = Field(
        None,
        ge=1,
        le=100,
        description="Number of dispensing pumps (configured default when unset)",
    )


class StationCreate(StationBase):
    """Station registration request."""

    code: str = Field(
        ...,
        max_length=20,
        description="Unique station code, immutable once issued",
    )


class StationUpdate(BaseModel):
    """Mutable station fields. The code is deliberately absent."""

    name: str | None = Field(None, min_length=1, max_length=100)
    location: str | None = Field(None, max_length=200)
    pump_count: int | None = Field(None, ge=1, le=100)


class Station(StationBase):
    """Stored station."""

    station_id: int
    code: str
    is_active: bool = True
    created_at: datetime | None = None
