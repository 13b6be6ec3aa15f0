"""
API Insights client.

Authenticated request pipeline for the API Insights backend: bearer token
attachment, response envelope normalization and single-flight access token
refresh.
"""

__version__ = "1.0.0"
