"""Client side of room synchronization."""

from .sync_client import SyncClient, SyncError, SyncResult, build_request, render_response

__all__ = ["SyncClient", "SyncError", "SyncResult", "build_request", "render_response"]
