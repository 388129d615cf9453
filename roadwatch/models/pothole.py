import math
from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator


class GeocodeStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"
    # Operator override, never written by the geocoding pipeline
    MANUAL = "manual"


class Severity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class ReportStatus(str, Enum):
    REPORTED = "reported"
    REPAIRING = "repairing"
    REPAIRED = "repaired"
    ARCHIVED = "archived"


class Coordinate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    @field_validator("latitude", "longitude")
    @classmethod
    def must_be_finite(cls, value):
        if not math.isfinite(value):
            raise ValueError("coordinate must be a finite number")
        return value


class GeocodeResult(BaseModel):
    """
    Canonical address derived from a reverse geocoding response.

    Only display_address is guaranteed; every other field is a best-effort
    extraction from the provider's address components.
    """
    display_address: str
    normalized_address: str
    parish: Optional[str] = None
    municipality: Optional[str] = None
    district: Optional[str] = None
    postal_code: Optional[str] = None


class SearchResult(BaseModel):
    display_name: str
    lat: float
    lng: float
    zoom: int


class PotholeCreate(BaseModel):
    lat: float
    lng: float
    description: Optional[str] = None
    severity: Severity = Severity.MODERATE
    user_id: Optional[str] = None
    photo_url: Optional[str] = None


class Pothole(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    user_id: Optional[str] = None
    lat: float
    lng: float
    address: Optional[str] = None
    normalized_address: Optional[str] = None
    parish: Optional[str] = None
    municipality: Optional[str] = None
    district: Optional[str] = None
    postal_code: Optional[str] = None
    geocode_status: GeocodeStatus = GeocodeStatus.PENDING
    geocoded_at: Optional[datetime] = None
    description: Optional[str] = None
    photo_url: Optional[str] = None
    severity: Severity = Severity.MODERATE
    status: ReportStatus = ReportStatus.REPORTED
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    repaired_at: Optional[datetime] = None
    reopen_count: int = 0


class BackfillSummary(BaseModel):
    """Counters reported at the end of a backfill run."""
    dry_run: bool = False
    candidates: int = 0
    updated: int = 0
    unresolved: int = 0
    out_of_territory: int = 0
    failed: int = 0
    failed_ids: List[str] = Field(default_factory=list)
