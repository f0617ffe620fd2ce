"""Notification dispatch engine for paging/SMS events.

Modules under ``dispatch`` are shared by the worker and operator scripts.
"""
