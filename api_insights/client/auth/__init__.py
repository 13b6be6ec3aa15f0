"""
Authentication package for the API Insights client.

This package contains authentication-related functionality including
durable token storage, single-flight token refresh, and session state
management.
"""
