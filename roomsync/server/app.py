"""FastAPI application serving the room sync protocol."""

import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..protocol import MessageSuccess, NewMessage, SyncRequest, SyncResponse
from ..store import MessageStore, StoreError

logger = logging.getLogger(__name__)


def create_app(store: MessageStore) -> FastAPI:
    """Create the sync server application.

    Args:
        store: Message store shared by every request.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Roomsync Server",
        description="Append-only room logs reconciled against local room files",
        version=__version__,
    )

    app.state.store = store

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error(f"Store failure while handling {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    # Sync def: FastAPI runs each call in its threadpool, the store lock
    # serializes them.
    @app.post("/", response_model=SyncResponse)
    def sync_room(body: SyncRequest) -> SyncResponse:
        """Return messages newer than last_message_id and append the client's own."""
        new_messages, own_message = store.exchange(
            room=body.room_name,
            last_message_id=body.last_message_id,
            lines=body.self_message_lines,
            sender=body.self_name,
        )

        self_message_success = None
        if own_message is not None:
            self_message_success = MessageSuccess(
                id=own_message.id,
                utc_unix_timestamp=own_message.utc_unix_timestamp,
            )

        return SyncResponse(
            self_message_success=self_message_success,
            new_messages=[NewMessage.from_message(m) for m in new_messages],
        )

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint for monitoring and load balancers."""
        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "version": __version__,
        }

    return app
