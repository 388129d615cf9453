"""
Road Watch
----------
Pothole reporting backend for Portugal: territory validation, address
normalization, reverse geocoding and the geocoding backfill job.
"""
