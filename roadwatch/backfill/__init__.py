"""
Backfill Module
-------------
Batch job that resolves missing geocoding on existing pothole reports.
Processes one report at a time, respecting the geocoding provider's rate limit.
"""
