"""Roomsync: connectionless text chat through shared, counter-indexed room logs."""

__version__ = "0.1.0"
