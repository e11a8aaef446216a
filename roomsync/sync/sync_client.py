"""Sync client reconciling a local room file against the server log.

One run reads the room file, sends a single request and appends the
response to the file. Nothing is retried: if the request fails the file is
left untouched and running again is safe.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import httpx
from pydantic import ValidationError

from ..protocol import SyncRequest, SyncResponse
from ..room import Room, append_to_room, format_block, load_room

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """The server could not be reached or sent an unusable response."""


@dataclass
class SyncResult:
    """Result of one sync run."""

    self_message_id: int | None = None
    messages_received: int = 0
    room_file_updated: bool = False


def build_request(room: Room) -> SyncRequest:
    return SyncRequest(
        room_name=room.config.room_name,
        last_message_id=room.resume_point,
        self_message_lines=room.staged_lines,
        self_name=room.config.self_name,
    )


def render_response(room: Room, response: SyncResponse) -> str:
    """Render the text to append to the room file for a server response.

    The client's own message gets a block with no content lines, since its
    staged lines are already in the file. Every block written in one
    response resumes from the own message's id when there is one, otherwise
    from the block's own id.

    Returns:
        Text to append, empty when there is nothing to record.
    """
    if response.self_message_success is None and not response.new_messages:
        return ""

    parts = []
    if not room.ends_with_newline:
        parts.append("\n")

    self_message_id = None
    if response.self_message_success is not None:
        success = response.self_message_success
        self_message_id = success.id
        parts.append(
            format_block(
                [],
                room.config.self_name,
                success.utc_unix_timestamp,
                success.id,
                success.id,
            )
        )

    for message in sorted(response.new_messages, key=lambda m: m.id):
        parts.append(
            format_block(
                message.lines,
                message.sender_name,
                message.utc_unix_timestamp,
                message.id,
                message.id if self_message_id is None else self_message_id,
            )
        )

    return "".join(parts)


class SyncClient:
    """Client for reconciling room files with a sync server."""

    def __init__(
        self,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        """Initialize the sync client.

        Args:
            timeout: Request timeout in seconds.
            http_client: Optional client to send requests with. A new one is
                opened per request when omitted.
        """
        self.timeout = timeout
        self._http_client = http_client

    def _post(self, client: httpx.Client, url: str, request: SyncRequest) -> httpx.Response:
        try:
            response = client.post(url, json=request.model_dump())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SyncError(
                f"HTTP {e.response.status_code} from {url}: {e.response.text}"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SyncError(f"Connection to {url} failed: {e}") from e
        return response

    def exchange(self, url: str, request: SyncRequest) -> SyncResponse:
        """Send one request to the server and decode its response.

        Raises:
            SyncError: On transport failure, an error status or an
                undecodable body.
        """
        logger.debug(
            f"Syncing with {url}: "
            f"last_message_id={request.last_message_id}, "
            f"self_message_lines={len(request.self_message_lines)}",
            extra={"room": request.room_name},
        )

        if self._http_client is not None:
            response = self._post(self._http_client, url, request)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = self._post(client, url, request)

        try:
            return SyncResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise SyncError(f"Unexpected server response: {response.text}") from e

    def sync(self, room_path: str | Path) -> SyncResult:
        """Reconcile a room file with its server.

        Raises:
            RoomFileError: The room file is malformed; no request is sent.
            SyncError: The exchange failed; the room file is not modified.
        """
        room = load_room(room_path)
        response = self.exchange(room.config.server_handle, build_request(room))

        result = SyncResult(messages_received=len(response.new_messages))
        if response.self_message_success is not None:
            result.self_message_id = response.self_message_success.id

        text = render_response(room, response)
        if text:
            append_to_room(room_path, text)
            result.room_file_updated = True

        logger.info(
            f"Synced: "
            f"sent={result.self_message_id is not None}, "
            f"received={result.messages_received}",
            extra={"room": room.config.room_name},
        )
        return result
