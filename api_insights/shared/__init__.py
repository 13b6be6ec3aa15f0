"""
Shared definitions for the API Insights client.

This package contains the exception hierarchy, logging configuration,
data models and abstract interfaces used across the client.
"""
