"""
API Module
---------
Provides RESTful API endpoints for pothole reports using FastAPI.
Features include:
- Submitting reports with authoritative territory validation
- Listing reports and aggregated statistics
- Location search and reverse geocoding lookups
- Triggering the geocoding backfill

Run with:
    uvicorn roadwatch.api.app:app --host 0.0.0.0 --port 8000
"""
