"""Per-room append-only message log with dense sequential ids.

Layout in the key-value store:

- ``{room}/messages/{id}``: JSON message payload
- ``{room}/last message id``: decimal id of the newest message

Ids start at 0 and have no gaps, so catch-up reads stop at the first
missing id.
"""

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator

from .kv import KeyValueStore, StoreError

logger = logging.getLogger(__name__)


@dataclass
class Message:
    """A message as stored on the server."""

    lines: list[str]
    id: int
    utc_unix_timestamp: int
    sender_name: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "lines": self.lines,
            "id": self.id,
            "utc_unix_timestamp": self.utc_unix_timestamp,
            "sender_name": self.sender_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Create from dictionary."""
        return cls(
            lines=list(data["lines"]),
            id=data["id"],
            utc_unix_timestamp=data["utc_unix_timestamp"],
            sender_name=data["sender_name"],
        )


def utc_unix_now() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def _message_key(room: str, message_id: int) -> bytes:
    return f"{room}/messages/{message_id}".encode()


def _last_id_key(room: str) -> bytes:
    return f"{room}/last message id".encode()


class MessageStore:
    """Assigns ids and persists messages for every room.

    One lock guards the whole store regardless of room. The lock is
    re-entrant so that exchange() can hold it across a read and an append.
    """

    def __init__(self, kv: KeyValueStore):
        """Initialize the message store.

        Args:
            kv: Backing key-value store. The message store is its only writer.
        """
        self._kv = kv
        self._lock = threading.RLock()

    def last_message_id(self, room: str) -> int | None:
        """Get the newest allocated id in a room, or None for an empty room."""
        with self._lock:
            raw = self._kv.get(_last_id_key(room))
        if raw is None:
            return None
        try:
            return int(raw.decode())
        except (UnicodeDecodeError, ValueError) as e:
            raise StoreError(f"Corrupt last message id for room {room!r}: {raw!r}") from e

    def append_self(self, room: str, lines: list[str], sender: str) -> Message:
        """Append a message to a room under the next free id.

        The message entry and the id counter are written in one atomic
        batch.

        Returns:
            The stored Message, carrying its id and authoritative send time.
        """
        with self._lock:
            last_id = self.last_message_id(room)
            message_id = 0 if last_id is None else last_id + 1
            message = Message(
                lines=list(lines),
                id=message_id,
                utc_unix_timestamp=utc_unix_now(),
                sender_name=sender,
            )
            self._kv.set_many(
                [
                    (_message_key(room, message_id), json.dumps(message.to_dict()).encode()),
                    (_last_id_key(room), str(message_id).encode()),
                ]
            )

        logger.info(
            f"Appended message {message_id} from {sender!r}", extra={"room": room}
        )
        return message

    def read_from(self, room: str, start_id: int) -> Iterator[Message]:
        """Lazily yield messages with ids start_id, start_id + 1, ...

        Stops at the first missing id.
        """
        message_id = start_id
        while True:
            with self._lock:
                raw = self._kv.get(_message_key(room, message_id))
            if raw is None:
                return
            try:
                message = Message.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError) as e:
                raise StoreError(
                    f"Corrupt message {message_id} in room {room!r}: {e}"
                ) from e
            yield message
            message_id += 1

    def exchange(
        self,
        room: str,
        last_message_id: int | None,
        lines: list[str],
        sender: str,
    ) -> tuple[list[Message], Message | None]:
        """Catch a client up and append its pending message, if any.

        Both steps run under one lock hold so no other message can land
        between the catch-up read and the append.

        Returns:
            Tuple of (new_messages, own_message). own_message is None when
            lines is empty.
        """
        start_id = 0 if last_message_id is None else last_message_id + 1
        with self._lock:
            new_messages = list(self.read_from(room, start_id))
            own_message = self.append_self(room, lines, sender) if lines else None

        logger.debug(
            f"{len(new_messages)} new messages since id {start_id}",
            extra={"room": room},
        )
        return new_messages, own_message
