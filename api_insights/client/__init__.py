"""
HTTP client for the API Insights backend.

This package contains configuration, the HTTP transport, the response
envelope codec, the authenticated request pipeline and the command line
entry point.
"""
