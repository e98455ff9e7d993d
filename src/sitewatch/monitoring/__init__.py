"""
sitewatch.monitoring

Read side of observability: live feeds, health verdicts, project metrics and
dashboard analytics, plus the background health poller.
"""
