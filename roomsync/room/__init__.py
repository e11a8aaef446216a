"""Room file codec.

Parses and writes the local text view of a room: the config block and the
message log tail with its resume bookkeeping.
"""

from .room_file import (
    MalformedConfig,
    MalformedLog,
    MessageBlock,
    Room,
    RoomConfig,
    RoomFileError,
    append_to_room,
    format_block,
    load_room,
    parse_blocks,
    parse_room,
    render_timestamp,
)

__all__ = [
    "MalformedConfig",
    "MalformedLog",
    "MessageBlock",
    "Room",
    "RoomConfig",
    "RoomFileError",
    "append_to_room",
    "format_block",
    "load_room",
    "parse_blocks",
    "parse_room",
    "render_timestamp",
]
