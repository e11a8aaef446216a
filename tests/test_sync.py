"""Tests for the sync client."""

import json
import httpx
import pytest
from unittest.mock import patch

from fastapi.testclient import TestClient

from roomsync.protocol import MessageSuccess, NewMessage, SyncResponse
from roomsync.room import MalformedConfig, parse_blocks, parse_room, render_timestamp
from roomsync.server import create_app
from roomsync.store import MemoryKeyValueStore, MessageStore
from roomsync.sync import SyncClient, SyncError, build_request, render_response


def room_config(self_name="alice"):
    return (
        "room name\\Test\n"
        f"self name\\{self_name}\n"
        "server handle\\http://testserver/\n"
        ".\n"
    )


@pytest.fixture
def http_client():
    """Create an in-process HTTP client talking to a fresh server."""
    return TestClient(create_app(MessageStore(MemoryKeyValueStore())))


@pytest.fixture
def sync_client(http_client):
    return SyncClient(http_client=http_client)


def write_room(tmp_path, name, text):
    path = tmp_path / f"{name}.room"
    path.write_text(text, encoding="utf-8")
    return path


def mock_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestBuildRequest:
    """Tests for turning a room into a request."""

    def test_never_synced(self):
        """Test a fresh room sends no last message id."""
        request = build_request(parse_room(room_config() + "hi\n"))

        assert request.model_dump() == {
            "room_name": "Test",
            "last_message_id": None,
            "self_message_lines": ["hi"],
            "self_name": "alice",
        }

    def test_resume_point_sent(self):
        """Test the resume point is declared as last seen."""
        request = build_request(parse_room(room_config() + "\\bob\\t\\4\\7\n"))

        assert request.last_message_id == 7
        assert request.self_message_lines == []


class TestRenderResponse:
    """Tests for applying a response to the room text."""

    def test_nothing_to_record(self):
        """Test an empty response writes nothing."""
        room = parse_room(room_config() + "draft")

        assert render_response(room, SyncResponse(new_messages=[])) == ""

    def test_own_message_block_has_no_content(self):
        """Test the staged lines are not written a second time."""
        room = parse_room(room_config() + "hi\n")
        response = SyncResponse(
            self_message_success=MessageSuccess(id=0, utc_unix_timestamp=100),
            new_messages=[],
        )

        text = render_response(room, response)

        assert text == f"\\alice\\{render_timestamp(100)}\\0\\0\n"

    def test_resume_point_is_own_id(self):
        """Test every block in a response with an own message resumes from it."""
        room = parse_room(room_config() + "hi\n")
        response = SyncResponse(
            self_message_success=MessageSuccess(id=5, utc_unix_timestamp=100),
            new_messages=[
                NewMessage(lines=["a"], id=3, utc_unix_timestamp=90, sender_name="bob"),
                NewMessage(lines=["b"], id=4, utc_unix_timestamp=95, sender_name="carol"),
            ],
        )

        blocks, _ = parse_blocks(parse_room(room_config() + "hi\n" + render_response(room, response)).tail)

        assert [b.message_id for b in blocks] == [5, 3, 4]
        assert [b.resume_point for b in blocks] == [5, 5, 5]
        assert [b.lines for b in blocks] == [["hi"], ["a"], ["b"]]

    def test_resume_point_is_message_id_without_own(self):
        """Test inbound messages resume from themselves when nothing was sent."""
        room = parse_room(room_config())
        response = SyncResponse(
            new_messages=[
                NewMessage(lines=["b"], id=4, utc_unix_timestamp=95, sender_name="carol"),
                NewMessage(lines=["a"], id=3, utc_unix_timestamp=90, sender_name="bob"),
            ],
        )

        blocks, _ = parse_blocks(parse_room(room_config() + render_response(room, response)).tail)

        assert [b.message_id for b in blocks] == [3, 4]
        assert [b.resume_point for b in blocks] == [3, 4]

    def test_line_terminated_when_file_lacks_newline(self):
        """Test a single newline is added before the first block."""
        room = parse_room(room_config() + "hi")
        response = SyncResponse(
            self_message_success=MessageSuccess(id=0, utc_unix_timestamp=100),
            new_messages=[],
        )

        text = render_response(room, response)

        assert text.startswith("\n\\alice\\")
        assert "\n\n" not in text


class TestSyncClient:
    """End-to-end tests against an in-process server."""

    def test_first_message_scenario(self, tmp_path, sync_client):
        """Test sending the first message of a room."""
        path = write_room(tmp_path, "alice", room_config() + "hi\n")

        with patch(
            "roomsync.store.message_store.utc_unix_now", return_value=1_700_000_000
        ):
            result = sync_client.sync(path)

        assert result.self_message_id == 0
        assert result.messages_received == 0
        assert result.room_file_updated is True
        assert path.read_text(encoding="utf-8") == (
            room_config() + f"hi\n\\alice\\{render_timestamp(1_700_000_000)}\\0\\0\n"
        )

        room = parse_room(path.read_text(encoding="utf-8"))
        assert room.resume_point == 0
        assert room.staged_lines == []

    def test_conversation(self, tmp_path, sync_client):
        """Test two participants exchanging messages."""
        alice = write_room(tmp_path, "alice", room_config("alice") + "hi bob\n")
        bob = write_room(tmp_path, "bob", room_config("bob"))

        sync_client.sync(alice)
        result = sync_client.sync(bob)

        assert result.messages_received == 1
        blocks, staged = parse_blocks(parse_room(bob.read_text(encoding="utf-8")).tail)
        assert [(b.lines, b.sender, b.message_id, b.resume_point) for b in blocks] == [
            (["hi bob"], "alice", 0, 0),
        ]
        assert staged == []

        with open(bob, "a", encoding="utf-8") as f:
            f.write("hi alice\nhow are you\n")
        sync_client.sync(bob)
        result = sync_client.sync(alice)

        assert result.messages_received == 1
        blocks, _ = parse_blocks(parse_room(alice.read_text(encoding="utf-8")).tail)
        assert [(b.lines, b.sender, b.message_id) for b in blocks] == [
            (["hi bob"], "alice", 0),
            (["hi alice", "how are you"], "bob", 1),
        ]

    def test_send_and_receive_share_resume_point(self, tmp_path, sync_client):
        """Test all blocks written in one sync carry the own message id."""
        bob = write_room(tmp_path, "bob", room_config("bob") + "one\n")
        sync_client.sync(bob)
        bob.write_text(bob.read_text(encoding="utf-8") + "two\n", encoding="utf-8")
        sync_client.sync(bob)

        alice = write_room(tmp_path, "alice", room_config("alice") + "hello\n")
        result = sync_client.sync(alice)

        assert result.self_message_id == 2
        assert result.messages_received == 2
        room = parse_room(alice.read_text(encoding="utf-8"))
        blocks, _ = parse_blocks(room.tail)
        assert [b.resume_point for b in blocks] == [2, 2, 2]
        assert room.resume_point == 2

        # Nothing is delivered twice on the next run
        assert sync_client.sync(alice).messages_received == 0

    def test_up_to_date_is_a_no_op(self, tmp_path, sync_client):
        """Test a synced room with nothing staged leaves the file alone."""
        path = write_room(tmp_path, "alice", room_config() + "hi")
        sync_client.sync(path)
        before = path.read_text(encoding="utf-8")

        result = sync_client.sync(path)

        assert result.room_file_updated is False
        assert path.read_text(encoding="utf-8") == before

    def test_blank_line_restoration(self, tmp_path, sync_client):
        """Test a file without a trailing newline gets exactly one."""
        path = write_room(tmp_path, "alice", room_config() + "hi")

        sync_client.sync(path)

        text = path.read_text(encoding="utf-8")
        assert text.startswith(room_config() + "hi\n\\alice\\")
        assert "\n\n" not in text
        assert text.endswith("\\0\\0\n")


class TestSyncFailures:
    """Tests for runs that must leave the room file untouched."""

    def test_connection_refused(self, tmp_path):
        """Test a transport failure is a sync error."""
        path = write_room(tmp_path, "alice", room_config() + "hi\n")

        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        client = SyncClient(http_client=mock_client(handler))

        with pytest.raises(SyncError, match="Connection"):
            client.sync(path)

        assert path.read_text(encoding="utf-8") == room_config() + "hi\n"

    def test_undecodable_response(self, tmp_path):
        """Test a non-protocol body is a sync error."""
        path = write_room(tmp_path, "alice", room_config() + "hi\n")
        client = SyncClient(
            http_client=mock_client(lambda request: httpx.Response(200, text="nope"))
        )

        with pytest.raises(SyncError, match="Unexpected server response"):
            client.sync(path)

        assert path.read_text(encoding="utf-8") == room_config() + "hi\n"

    def test_server_error_status(self, tmp_path):
        """Test an error status is a sync error."""
        path = write_room(tmp_path, "alice", room_config() + "hi\n")
        client = SyncClient(
            http_client=mock_client(
                lambda request: httpx.Response(500, json={"error": "disk full"})
            )
        )

        with pytest.raises(SyncError, match="HTTP 500"):
            client.sync(path)

        assert path.read_text(encoding="utf-8") == room_config() + "hi\n"

    def test_malformed_room_sends_nothing(self, tmp_path):
        """Test config errors abort before any request."""
        path = write_room(tmp_path, "alice", "room name\\Test\n.\nhi\n")
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"new_messages": []})

        client = SyncClient(http_client=mock_client(handler))

        with pytest.raises(MalformedConfig):
            client.sync(path)

        assert requests == []

    def test_request_payload(self, tmp_path):
        """Test the JSON sent on the wire."""
        path = write_room(tmp_path, "alice", room_config() + "\\bob\\t\\0\\0\nline 1\nline 2\n")
        captured = []

        def handler(request):
            captured.append((str(request.url), json.loads(request.content)))
            return httpx.Response(200, json={"self_message_success": None, "new_messages": []})

        SyncClient(http_client=mock_client(handler)).sync(path)

        assert captured == [
            (
                "http://testserver/",
                {
                    "room_name": "Test",
                    "last_message_id": 0,
                    "self_message_lines": ["line 1", "line 2"],
                    "self_name": "alice",
                },
            )
        ]
