"""
Data Models Module
----------------
Contains Pydantic models for data validation and serialization.
Defines pothole reports, geocoding results and the geocoding status lifecycle.
"""
from roadwatch.models.pothole import (
    BackfillSummary,
    Coordinate,
    GeocodeResult,
    GeocodeStatus,
    Pothole,
    PotholeCreate,
    ReportStatus,
    SearchResult,
    Severity,
)
