"""Text representation of a room: config block plus message log tail.

A room file looks like::

    room name\\Test
    self name\\alice
    server handle\\http://chat.example:80/
    .
    first message
    \\bob\\Mon, 19 Oct 2026 10:00:00 +0200\\0\\0
    hello bob

The config block ends at the first ``.`` line. Every committed message is
closed by a delimiter line ``\\sender\\time\\message id\\resume point``.
Lines after the last delimiter are staged content waiting to be sent.

Content lines must not begin with the escape character: such a line is read
back as a delimiter line. Sender names must not contain the escape character
at all, since it would split the delimiter line into extra fields; the server
rejects such names.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path

logger = logging.getLogger(__name__)

ESCAPE = "\\"
TERMINATOR = "."
REQUIRED_KEYS = ("room name", "self name", "server handle")


class RoomFileError(Exception):
    """Base error for unreadable room files."""


class MalformedConfig(RoomFileError):
    """Config block is unterminated, or a required setting is missing or ambiguous."""


class MalformedLog(RoomFileError):
    """A delimiter line in the message log cannot be parsed."""


@dataclass
class RoomConfig:
    room_name: str
    self_name: str
    server_handle: str


@dataclass
class MessageBlock:
    """A committed message as it appears in the room file."""

    lines: list[str]
    sender: str
    sent_at: str  # Rendered local time, not parsed back
    message_id: int
    resume_point: int


@dataclass
class Room:
    """A parsed room file."""

    config: RoomConfig
    staged_lines: list[str] = field(default_factory=list)
    resume_point: int | None = None  # None until the room has synced once
    ends_with_newline: bool = False
    tail: list[str] = field(default_factory=list)


def _split_config(lines: list[str]) -> tuple[list[str], list[str]]:
    for index, line in enumerate(lines):
        if line.rstrip() == TERMINATOR:
            return lines[:index], lines[index + 1:]
    raise MalformedConfig("Room config should end with a '.' line")


def parse_config(lines: list[str]) -> RoomConfig:
    """Resolve the required settings from config lines.

    Each line is split on the escape character; the last segment is the
    value and the rest form the key. A key must resolve to exactly one value.

    Raises:
        MalformedConfig: A required key is absent or has several values.
    """
    settings: dict[str, set[str]] = {}
    for line in lines:
        line = line.rstrip()
        if not line:
            continue
        *key_parts, value = line.split(ESCAPE)
        if not key_parts:
            # A bare key with no value
            settings.setdefault(value, set())
            continue
        settings.setdefault(ESCAPE.join(key_parts), set()).add(value)

    resolved = {}
    for key in REQUIRED_KEYS:
        values = settings.get(key)
        if not values:
            raise MalformedConfig(f"{key!r} should be specified")
        if len(values) > 1:
            raise MalformedConfig(
                f"{key!r} is ambiguous: {', '.join(sorted(values))}"
            )
        resolved[key] = next(iter(values))

    return RoomConfig(
        room_name=resolved["room name"],
        self_name=resolved["self name"],
        server_handle=resolved["server handle"],
    )


def _parse_id(text: str, line: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise MalformedLog(f"Invalid message id {text!r} in delimiter line {line!r}")
    return int(text)


def parse_delimiter(line: str) -> tuple[str, str, int, int]:
    """Split a delimiter line into (sender, sent_at, message_id, resume_point).

    Raises:
        MalformedLog: The line does not hold exactly four fields or an id
            is not an unsigned integer.
    """
    fields = line[len(ESCAPE):].split(ESCAPE)
    if len(fields) != 4:
        raise MalformedLog(
            f"Delimiter line should have 4 fields, got {len(fields)}: {line!r}"
        )
    sender, sent_at, message_id, resume_point = fields
    return sender, sent_at, _parse_id(message_id, line), _parse_id(resume_point, line)


def parse_tail(lines: list[str]) -> tuple[list[str], int | None, bool]:
    """Scan the log tail backwards for staged content and the resume point.

    Returns:
        Tuple of (staged_lines, resume_point, ends_with_newline).
    """
    staged: list[str] = []
    ends_with_newline = False
    resume_point = None

    for line in reversed(lines):
        if not line and not staged:
            ends_with_newline = True
            continue
        if line.startswith(ESCAPE):
            resume_point = parse_delimiter(line)[3]
            break
        staged.append(line)

    staged.reverse()
    return staged, resume_point, ends_with_newline


def parse_blocks(lines: list[str]) -> tuple[list[MessageBlock], list[str]]:
    """Read the log tail forwards into committed blocks.

    Returns:
        Tuple of (blocks, staged_lines).
    """
    blocks = []
    pending: list[str] = []
    for line in lines:
        if line.startswith(ESCAPE):
            sender, sent_at, message_id, resume_point = parse_delimiter(line)
            blocks.append(
                MessageBlock(
                    lines=pending,
                    sender=sender,
                    sent_at=sent_at,
                    message_id=message_id,
                    resume_point=resume_point,
                )
            )
            pending = []
        else:
            pending.append(line)

    while pending and not pending[-1]:
        pending.pop()
    return blocks, pending


def parse_room(text: str) -> Room:
    """Parse the full text of a room file."""
    lines = text.replace("\r\n", "\n").split("\n")
    config_lines, tail = _split_config(lines)
    config = parse_config(config_lines)
    staged, resume_point, ends_with_newline = parse_tail(tail)
    return Room(
        config=config,
        staged_lines=staged,
        resume_point=resume_point,
        ends_with_newline=ends_with_newline,
        tail=tail,
    )


def render_timestamp(utc_unix_timestamp: int) -> str:
    """Render a UTC unix timestamp as RFC 2822 in the local timezone."""
    utc = datetime.fromtimestamp(utc_unix_timestamp, tz=timezone.utc)
    return format_datetime(utc.astimezone())


def format_block(
    lines: list[str],
    sender: str,
    utc_unix_timestamp: int,
    message_id: int,
    resume_point: int,
) -> str:
    """Format content lines followed by their delimiter line."""
    delimiter = ESCAPE + ESCAPE.join(
        [sender, render_timestamp(utc_unix_timestamp), str(message_id), str(resume_point)]
    )
    return "".join(f"{line}\n" for line in [*lines, delimiter])


def load_room(path: str | Path) -> Room:
    """Read and parse a room file.

    Raises:
        RoomFileError: The file cannot be read or is malformed.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RoomFileError(f"Cannot read room file {path}: {e}") from e

    room = parse_room(text)
    logger.debug(
        f"Loaded {path}: "
        f"resume_point={room.resume_point}, staged={len(room.staged_lines)}",
        extra={"room": room.config.room_name},
    )
    return room


def append_to_room(path: str | Path, text: str) -> None:
    """Append text to a room file in a single write."""
    with open(path, "a", encoding="utf-8", newline="") as f:
        f.write(text)
