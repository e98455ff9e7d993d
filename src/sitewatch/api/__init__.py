"""
sitewatch.api

HTTP and WebSocket surface of the service (FastAPI).
"""
