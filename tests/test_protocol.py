"""
Unit tests for the wire codec.

Run:  python -m pytest tests/test_protocol.py -v
"""
import os
import struct
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from helpers import (
    connected_frame, hosted_frame, joined_frame, left_frame, map_frame,
    shot_frame, state_frame, short_str,
)
from protocol import (
    INBOUND_KINDS, KIND_COUNT, MOVE_PRESS_FLAG, OUTBOUND_KINDS, Cell,
    ChatMessage, ChattedMessage, ConnectedMessage, Direction, ErrorMessage,
    GamePhase, HostMessage, HostedMessage, JoinMessage, JoinedMessage, Kind,
    LeaveMessage, LeftMessage, MalformedFrame, MapMessage, MouseMessage,
    MoveMessage, NotReceivable, NotSendable, ProtocolError, ShootMessage,
    ShotMessage, StartMessage, StateMessage, SystemKind, SystemMessage,
    TeamMessage, Tile, UnknownMessageKind, WeaponMessage, decode, encode,
)


# ────────────────────────────────────────────────────────────────────────────
# 1. Kind table
# ────────────────────────────────────────────────────────────────────────────

def test_kind_tags_are_pinned():
    assert Kind.CONNECTED == 0
    assert Kind.JOIN == 3
    assert Kind.MOVE == 12
    assert Kind.SHOT == 15
    assert Kind.MAP == 18
    assert Kind.STATE == 19
    assert Kind.ERROR == 23
    assert KIND_COUNT == 24


def test_inbound_and_outbound_are_disjoint():
    assert not INBOUND_KINDS & OUTBOUND_KINDS
    assert len(INBOUND_KINDS) == 10
    assert len(OUTBOUND_KINDS) == 10


# ────────────────────────────────────────────────────────────────────────────
# 2. Decoding inbound kinds
# ────────────────────────────────────────────────────────────────────────────

def test_decode_connected():
    msg = decode(connected_frame(7, "alice"))
    assert msg == ConnectedMessage(id=7, username="alice")


def test_decode_connected_negative_id_and_unicode_name():
    msg = decode(connected_frame(-2, "zoë"))
    assert msg.id == -2
    assert msg.username == "zoë"


def test_decode_hosted_and_joined_room_codes():
    assert decode(hosted_frame(b"AB12")) == HostedMessage(room="AB12")
    assert decode(joined_frame(b"WXYZ")) == JoinedMessage(room="WXYZ")


def test_decode_left_has_no_payload():
    assert decode(left_frame()) == LeftMessage()


def test_decode_shot_cells():
    msg = decode(shot_frame((1, 2, Tile.TEAM_A), (3, 0, Tile.WALL)))
    assert msg == ShotMessage(cells=(Cell(1, 2, Tile.TEAM_A), Cell(3, 0, Tile.WALL)))


def test_decode_chatted():
    frame = bytes([Kind.CHATTED]) + struct.pack("<h", 4) + short_str("gg")
    assert decode(frame) == ChattedMessage(sender=4, message="gg")


def test_decode_map():
    msg = decode(map_frame(3, 2, [0, 1, 2, 3, 0, 1]))
    assert msg == MapMessage(width=3, height=2, tiles=bytes([0, 1, 2, 3, 0, 1]))


def test_decode_state_with_players():
    frame = state_frame(
        players=[
            dict(user_id=1, team=0, weapon=2, x=1.5, y=2.25, vx=1, vy=0,
                 theta=0.5, cooldown=3, username="one"),
            dict(user_id=2, team=1, x=4.0, y=0.5, vx=0, vy=-1, username="two"),
        ],
        phase=GamePhase.PLAYING, host=1, room=b"ROOM", scores=(10, 20, 1, 2),
    )
    msg = decode(frame)
    assert isinstance(msg, StateMessage)
    world = msg.world
    assert world.host_id == 1
    assert world.room == "ROOM"
    assert world.started_at is None
    assert world.aggregate.team_a_paint == 10
    assert world.aggregate.team_b_paint == 20
    assert world.aggregate.score_a == 1
    assert world.aggregate.score_b == 2
    assert world.is_playing
    assert len(world.players) == 2

    one = world.find_player(1)
    assert one.username == "one"
    assert one.weapon == 2
    assert (one.x, one.y) == (1.5, 2.25)
    assert (one.vx, one.vy) == (1, 0)
    assert one.theta == 0.5
    assert one.cooldown == 3
    assert one.is_moving

    two = world.find_player(2)
    assert two.team == 1
    assert two.vy == -1
    assert world.find_player(99) is None


def test_decode_state_started_at():
    msg = decode(state_frame(unix=1_700_000_000, phase=GamePhase.GETTING_READY))
    assert msg.world.started_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
    assert not msg.world.is_playing


def test_decode_system():
    frame = bytes([Kind.SYSTEM, SystemKind.INFO]) + short_str("welcome")
    assert decode(frame) == SystemMessage(subtype=SystemKind.INFO, message="welcome")


def test_decode_system_unknown_subtype_rejected():
    frame = bytes([Kind.SYSTEM, 5]) + short_str("??")
    with pytest.raises(ProtocolError):
        decode(frame)


def test_decode_error():
    frame = bytes([Kind.ERROR]) + short_str("room full")
    assert decode(frame) == ErrorMessage(message="room full")


def test_decode_tolerates_trailing_bytes():
    assert decode(joined_frame(b"ROOM") + b"extra") == JoinedMessage(room="ROOM")


# ────────────────────────────────────────────────────────────────────────────
# 3. Decoding failures
# ────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("tag", [KIND_COUNT, 100, 255])
def test_decode_unknown_kind(tag):
    with pytest.raises(UnknownMessageKind):
        decode(bytes([tag, 0, 0, 0]))


@pytest.mark.parametrize("kind", sorted(OUTBOUND_KINDS))
def test_decode_outbound_kind_is_not_receivable(kind):
    with pytest.raises(NotReceivable):
        decode(bytes([kind]) + bytes(16))


@pytest.mark.parametrize("kind", [Kind.STARTED, Kind.TEAMED, Kind.MOVED, Kind.SYNC])
def test_decode_unsupported_inbound_kind_is_not_receivable(kind):
    with pytest.raises(NotReceivable):
        decode(bytes([kind]))


def test_decode_empty_frame():
    with pytest.raises(MalformedFrame):
        decode(b"")


@pytest.mark.parametrize("frame", [
    connected_frame(1, "alice")[:-2],
    joined_frame(b"RO"),
    shot_frame((1, 1, 1))[:-1],
    map_frame(4, 4)[:-3],
    state_frame(players=[dict(user_id=1)])[:-4],
    bytes([Kind.ERROR, 10]) + b"short",
])
def test_decode_truncated_frames(frame):
    with pytest.raises(MalformedFrame):
        decode(frame)


def test_decode_negative_map_size():
    frame = bytes([Kind.MAP]) + struct.pack("<ii", -1, 3)
    with pytest.raises(MalformedFrame):
        decode(frame)


def test_decode_invalid_utf8():
    frame = bytes([Kind.ERROR, 2]) + b"\xff\xfe"
    with pytest.raises(MalformedFrame):
        decode(frame)


# ────────────────────────────────────────────────────────────────────────────
# 4. Encoding outbound kinds
# ────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("msg", [
    HostMessage(), LeaveMessage(), StartMessage(), TeamMessage(), ShootMessage(),
])
def test_encode_bare_kinds_are_one_byte(msg):
    assert encode(msg) == bytes([msg.kind])


@pytest.mark.parametrize("room, expected", [
    ("ABCD", b"ABCD"),
    ("AB", b"AB  "),
    ("", b"    "),
    ("ABCDEFGH", b"ABCD"),
])
def test_encode_join_is_always_five_bytes(room, expected):
    frame = encode(JoinMessage(room))
    assert len(frame) == 5
    assert frame == bytes([Kind.JOIN]) + expected


def test_encode_weapon():
    assert encode(WeaponMessage(3)) == bytes([Kind.WEAPON, 3])


def test_encode_weapon_out_of_range():
    with pytest.raises(ProtocolError):
        encode(WeaponMessage(300))


@pytest.mark.parametrize("direction", list(Direction))
@pytest.mark.parametrize("start", [True, False])
def test_encode_move_sets_one_direction_bit(direction, start):
    frame = encode(MoveMessage(direction, start))
    assert len(frame) == 2
    assert frame[0] == Kind.MOVE
    flags = frame[1]
    assert bin(flags & 0x0F).count("1") == 1
    assert bool(flags & MOVE_PRESS_FLAG) == start
    assert flags & ~0x1F == 0


def test_encode_move_bit_layout():
    assert encode(MoveMessage(Direction.UP, True))[1] == 0b10001
    assert encode(MoveMessage(Direction.DOWN, False))[1] == 0b00010
    assert encode(MoveMessage(Direction.LEFT, False))[1] == 0b00100
    assert encode(MoveMessage(Direction.RIGHT, True))[1] == 0b11000


def test_encode_chat():
    assert encode(ChatMessage("hi")) == bytes([Kind.CHAT, 2]) + b"hi"


def test_encode_chat_truncates_to_255_bytes():
    frame = encode(ChatMessage("x" * 400))
    assert frame[1] == 255
    assert len(frame) == 2 + 255


def test_encode_chat_counts_utf8_bytes():
    frame = encode(ChatMessage("é"))
    assert frame == bytes([Kind.CHAT, 2]) + "é".encode("utf-8")


def test_encode_mouse():
    frame = encode(MouseMessage(5, -2))
    assert len(frame) == 9
    assert frame == bytes([Kind.MOUSE]) + struct.pack("<ii", 5, -2)


def test_encode_mouse_out_of_range():
    with pytest.raises(ProtocolError):
        encode(MouseMessage(2 ** 40, 0))


# ────────────────────────────────────────────────────────────────────────────
# 5. Encoding failures
# ────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("msg", [
    ConnectedMessage(1, "a"),
    HostedMessage("ROOM"),
    JoinedMessage("ROOM"),
    LeftMessage(),
    ShotMessage(),
    ChattedMessage(1, "hi"),
    MapMessage(1, 1, b"\x00"),
    SystemMessage(SystemKind.INFO, "x"),
    ErrorMessage("x"),
])
def test_encode_inbound_kind_is_not_sendable(msg):
    with pytest.raises(NotSendable):
        encode(msg)


def test_encode_rejects_non_messages():
    with pytest.raises(ProtocolError):
        encode({"kind": "move"})


# ────────────────────────────────────────────────────────────────────────────
# 6. Float fields
# ────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("field", ["x", "y", "theta"])
@pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
def test_decode_state_rejects_non_finite_floats(field, value):
    frame = state_frame(players=[{"user_id": 1, field: value}])
    with pytest.raises(MalformedFrame):
        decode(frame)


def test_decode_state_keeps_huge_finite_heading():
    msg = decode(state_frame(players=[dict(user_id=1, theta=1e30)]))
    assert msg.world.find_player(1).theta == pytest.approx(1e30, rel=1e-6)
