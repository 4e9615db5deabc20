"""
Application services: sync, approvals, notifications, analytics.

Routers call into these; repositories and spreadsheet adapters stay behind them.
"""
