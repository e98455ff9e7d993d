"""
sitewatch.telemetry

Write path for observability data: user activity, error logs and performance records.
"""
