"""
Paint arena wire protocol.

Every frame is one kind tag byte followed by a kind specific payload.
All integers and floats are little-endian, strings are UTF-8 and either
fixed width (room codes) or prefixed by a one byte length.

Inbound kinds (server → client) can only be decoded, outbound kinds
(client → server) can only be encoded. The codec keeps no state, so the
same functions serve every bot in the swarm.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Callable, ClassVar, Dict, Optional, Tuple


# ═══════════════════════════════════════════════════════════════
#  ERRORS
# ═══════════════════════════════════════════════════════════════

class ProtocolError(Exception):
    """A single frame could not be decoded or a message could not be encoded."""


class UnknownMessageKind(ProtocolError):
    pass


class NotReceivable(ProtocolError):
    pass


class NotSendable(ProtocolError):
    pass


class MalformedFrame(ProtocolError):
    pass


# ═══════════════════════════════════════════════════════════════
#  ENUMERATIONS — tag order is pinned to the server's
# ═══════════════════════════════════════════════════════════════

class Kind(IntEnum):
    CONNECTED = 0
    HOST      = 1
    HOSTED    = 2
    JOIN      = 3
    JOINED    = 4
    LEAVE     = 5
    LEFT      = 6
    START     = 7
    STARTED   = 8
    TEAM      = 9
    TEAMED    = 10
    WEAPON    = 11
    MOVE      = 12
    MOVED     = 13
    SHOOT     = 14
    SHOT      = 15
    CHAT      = 16
    CHATTED   = 17
    MAP       = 18
    STATE     = 19
    MOUSE     = 20
    SYNC      = 21
    SYSTEM    = 22
    ERROR     = 23


KIND_COUNT = len(Kind)

INBOUND_KINDS = frozenset({
    Kind.CONNECTED, Kind.HOSTED, Kind.JOINED, Kind.LEFT, Kind.SHOT,
    Kind.CHATTED, Kind.MAP, Kind.STATE, Kind.SYSTEM, Kind.ERROR,
})
OUTBOUND_KINDS = frozenset({
    Kind.HOST, Kind.JOIN, Kind.LEAVE, Kind.START, Kind.TEAM,
    Kind.WEAPON, Kind.MOVE, Kind.SHOOT, Kind.CHAT, Kind.MOUSE,
})


class SystemKind(IntEnum):
    INFO = 0


class Team(IntEnum):
    TEAM_A = 0
    TEAM_B = 1


class Tile(IntEnum):
    EMPTY  = 0
    TEAM_A = 1
    TEAM_B = 2
    WALL   = 3


class GamePhase(IntEnum):
    WAITING_FOR_PLAYERS = 0
    GETTING_READY       = 1
    PLAYING             = 2
    GAME_OVER           = 3


def team_tile(team: int) -> Tile:
    """The tile colour painted by ``team``."""
    return Tile.TEAM_A if team == Team.TEAM_A else Tile.TEAM_B


class Direction(Enum):
    LEFT  = "left"
    RIGHT = "right"
    UP    = "up"
    DOWN  = "down"

    @property
    def delta(self) -> Tuple[int, int]:
        return _DIRECTION_DELTAS[self]

    @property
    def flag(self) -> int:
        return _DIRECTION_FLAGS[self]


_DIRECTION_DELTAS = {
    Direction.LEFT:  (-1, 0),
    Direction.RIGHT: (1, 0),
    Direction.UP:    (0, -1),
    Direction.DOWN:  (0, 1),
}

# Move flag byte: bits 0-3 pick the direction, bit 4 is press/release
_DIRECTION_FLAGS = {
    Direction.UP:    1 << 0,
    Direction.DOWN:  1 << 1,
    Direction.LEFT:  1 << 2,
    Direction.RIGHT: 1 << 3,
}
MOVE_PRESS_FLAG = 1 << 4


# ═══════════════════════════════════════════════════════════════
#  DATA MODELS
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Cell:
    x:     int
    y:     int
    state: int


@dataclass(frozen=True)
class PlayerState:
    user_id:  int
    username: str
    team:     int
    weapon:   int
    x:        float
    y:        float
    vx:       int     # direction step count, not a continuous velocity
    vy:       int
    theta:    float
    cooldown: int

    @property
    def is_moving(self) -> bool:
        return self.vx != 0 or self.vy != 0


@dataclass(frozen=True)
class Aggregate:
    team_a_paint: int
    team_b_paint: int
    score_a:      int
    score_b:      int
    phase:        int


@dataclass(frozen=True)
class WorldState:
    host_id:    int
    room:       str
    started_at: Optional[datetime]
    aggregate:  Aggregate
    players:    Tuple[PlayerState, ...] = ()

    @property
    def is_playing(self) -> bool:
        return self.aggregate.phase == GamePhase.PLAYING

    def find_player(self, user_id: int) -> Optional[PlayerState]:
        for player in self.players:
            if player.user_id == user_id:
                return player
        return None


# ═══════════════════════════════════════════════════════════════
#  MESSAGES — one frozen dataclass per kind
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ConnectedMessage:
    kind: ClassVar[Kind] = Kind.CONNECTED
    id:       int
    username: str


@dataclass(frozen=True)
class HostedMessage:
    kind: ClassVar[Kind] = Kind.HOSTED
    room: str


@dataclass(frozen=True)
class JoinedMessage:
    kind: ClassVar[Kind] = Kind.JOINED
    room: str


@dataclass(frozen=True)
class LeftMessage:
    kind: ClassVar[Kind] = Kind.LEFT


@dataclass(frozen=True)
class ShotMessage:
    kind: ClassVar[Kind] = Kind.SHOT
    cells: Tuple[Cell, ...] = ()


@dataclass(frozen=True)
class ChattedMessage:
    kind: ClassVar[Kind] = Kind.CHATTED
    sender:  int
    message: str


@dataclass(frozen=True)
class MapMessage:
    kind: ClassVar[Kind] = Kind.MAP
    width:  int
    height: int
    tiles:  bytes


@dataclass(frozen=True)
class StateMessage:
    kind: ClassVar[Kind] = Kind.STATE
    world: WorldState


@dataclass(frozen=True)
class SystemMessage:
    kind: ClassVar[Kind] = Kind.SYSTEM
    subtype: SystemKind
    message: str


@dataclass(frozen=True)
class ErrorMessage:
    kind: ClassVar[Kind] = Kind.ERROR
    message: str


@dataclass(frozen=True)
class HostMessage:
    kind: ClassVar[Kind] = Kind.HOST


@dataclass(frozen=True)
class JoinMessage:
    kind: ClassVar[Kind] = Kind.JOIN
    room: str


@dataclass(frozen=True)
class LeaveMessage:
    kind: ClassVar[Kind] = Kind.LEAVE


@dataclass(frozen=True)
class StartMessage:
    kind: ClassVar[Kind] = Kind.START


@dataclass(frozen=True)
class TeamMessage:
    kind: ClassVar[Kind] = Kind.TEAM


@dataclass(frozen=True)
class WeaponMessage:
    kind: ClassVar[Kind] = Kind.WEAPON
    weapon: int


@dataclass(frozen=True)
class MoveMessage:
    kind: ClassVar[Kind] = Kind.MOVE
    direction: Direction
    start:     bool


@dataclass(frozen=True)
class ShootMessage:
    kind: ClassVar[Kind] = Kind.SHOOT


@dataclass(frozen=True)
class ChatMessage:
    kind: ClassVar[Kind] = Kind.CHAT
    message: str


@dataclass(frozen=True)
class MouseMessage:
    kind: ClassVar[Kind] = Kind.MOUSE
    x: int
    y: int


# ═══════════════════════════════════════════════════════════════
#  DECODING
# ═══════════════════════════════════════════════════════════════

_U8  = struct.Struct("<B")
_I16 = struct.Struct("<h")
_I32 = struct.Struct("<i")
_F32 = struct.Struct("<f")

ROOM_CODE_LEN = 4
MAX_CHAT_LEN  = 255


class _Reader:
    """Cursor over a frame payload; every read advances the offset."""

    def __init__(self, frame: bytes, offset: int = 1):
        self._frame = memoryview(frame)
        self.offset = offset

    def _unpack(self, fmt: struct.Struct):
        try:
            (value,) = fmt.unpack_from(self._frame, self.offset)
        except struct.error as e:
            raise MalformedFrame(f"frame truncated at byte {self.offset}") from e
        self.offset += fmt.size
        return value

    def u8(self) -> int:
        return self._unpack(_U8)

    def i16(self) -> int:
        return self._unpack(_I16)

    def i32(self) -> int:
        return self._unpack(_I32)

    def f32(self) -> float:
        offset = self.offset
        value  = self._unpack(_F32)
        if not math.isfinite(value):
            raise MalformedFrame(f"non-finite float {value} at byte {offset}")
        return value

    def raw(self, length: int) -> bytes:
        end = self.offset + length
        if length < 0 or end > len(self._frame):
            raise MalformedFrame(
                f"need {length} bytes at byte {self.offset}, "
                f"frame has {len(self._frame)}"
            )
        data = self._frame[self.offset:end].tobytes()
        self.offset = end
        return data

    def string(self, length: int) -> str:
        try:
            return self.raw(length).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrame(f"invalid UTF-8 string: {e}") from e

    def short_string(self) -> str:
        return self.string(self.u8())


def _decode_connected(r: _Reader) -> ConnectedMessage:
    user_id = r.i16()
    return ConnectedMessage(id=user_id, username=r.short_string())


def _decode_hosted(r: _Reader) -> HostedMessage:
    return HostedMessage(room=r.string(ROOM_CODE_LEN))


def _decode_joined(r: _Reader) -> JoinedMessage:
    return JoinedMessage(room=r.string(ROOM_CODE_LEN))


def _decode_left(r: _Reader) -> LeftMessage:
    return LeftMessage()


def _decode_shot(r: _Reader) -> ShotMessage:
    count = r.u8()
    cells = tuple(Cell(x=r.i32(), y=r.i32(), state=r.u8()) for _ in range(count))
    return ShotMessage(cells=cells)


def _decode_chatted(r: _Reader) -> ChattedMessage:
    sender = r.i16()
    return ChattedMessage(sender=sender, message=r.short_string())


def _decode_map(r: _Reader) -> MapMessage:
    width  = r.i32()
    height = r.i32()
    if width < 0 or height < 0:
        raise MalformedFrame(f"negative map size {width}x{height}")
    return MapMessage(width=width, height=height, tiles=r.raw(width * height))


def _decode_player(r: _Reader) -> PlayerState:
    user_id = r.i16()
    team    = r.u8()
    weapon  = r.u8()
    x       = r.f32()
    y       = r.f32()
    vx      = r.i32()
    vy      = r.i32()
    theta   = r.f32()
    cooldown = r.u8()
    return PlayerState(
        user_id  = user_id,
        username = r.short_string(),
        team     = team,
        weapon   = weapon,
        x        = x,
        y        = y,
        vx       = vx,
        vy       = vy,
        theta    = theta,
        cooldown = cooldown,
    )


def _decode_state(r: _Reader) -> StateMessage:
    host_id = r.i16()
    room    = r.string(ROOM_CODE_LEN)
    unix    = r.i32()
    started_at = datetime.fromtimestamp(unix, tz=timezone.utc) if unix > 0 else None
    aggregate = Aggregate(
        team_a_paint = r.i32(),
        team_b_paint = r.i32(),
        score_a      = r.i32(),
        score_b      = r.i32(),
        phase        = r.u8(),
    )
    count   = r.u8()
    players = tuple(_decode_player(r) for _ in range(count))
    return StateMessage(world=WorldState(
        host_id    = host_id,
        room       = room,
        started_at = started_at,
        aggregate  = aggregate,
        players    = players,
    ))


def _decode_system(r: _Reader) -> SystemMessage:
    index = r.u8()
    if index >= len(SystemKind):
        raise ProtocolError(f"unknown system message type {index}")
    return SystemMessage(subtype=SystemKind(index), message=r.short_string())


def _decode_error(r: _Reader) -> ErrorMessage:
    return ErrorMessage(message=r.short_string())


_DECODERS: Dict[Kind, Callable[[_Reader], object]] = {
    Kind.CONNECTED: _decode_connected,
    Kind.HOSTED:    _decode_hosted,
    Kind.JOINED:    _decode_joined,
    Kind.LEFT:      _decode_left,
    Kind.SHOT:      _decode_shot,
    Kind.CHATTED:   _decode_chatted,
    Kind.MAP:       _decode_map,
    Kind.STATE:     _decode_state,
    Kind.SYSTEM:    _decode_system,
    Kind.ERROR:     _decode_error,
}


def decode(frame: bytes):
    """Decode one inbound frame into its message dataclass.

    Trailing bytes after the last declared field are ignored.
    """
    if not frame:
        raise MalformedFrame("empty frame")
    tag = frame[0]
    if tag >= KIND_COUNT:
        raise UnknownMessageKind(f"unknown message kind {tag}")
    kind    = Kind(tag)
    decoder = _DECODERS.get(kind)
    if decoder is None:
        raise NotReceivable(f"{kind.name} is not receivable")
    return decoder(_Reader(frame))


# ═══════════════════════════════════════════════════════════════
#  ENCODING
# ═══════════════════════════════════════════════════════════════

def _tag(kind: Kind) -> bytes:
    return _U8.pack(kind)


def _encode_bare(msg) -> bytes:
    return _tag(msg.kind)


def _encode_join(msg: JoinMessage) -> bytes:
    # lenient: truncate or space-pad, never fail
    room = msg.room.encode("utf-8")[:ROOM_CODE_LEN].ljust(ROOM_CODE_LEN, b" ")
    return _tag(msg.kind) + room


def _encode_weapon(msg: WeaponMessage) -> bytes:
    try:
        return _tag(msg.kind) + _U8.pack(msg.weapon)
    except struct.error as e:
        raise ProtocolError(f"weapon id out of range: {msg.weapon}") from e


def _encode_move(msg: MoveMessage) -> bytes:
    flags = Direction(msg.direction).flag
    if msg.start:
        flags |= MOVE_PRESS_FLAG
    return _tag(msg.kind) + _U8.pack(flags)


def _encode_chat(msg: ChatMessage) -> bytes:
    body = msg.message.encode("utf-8")[:MAX_CHAT_LEN]
    # never cut a multi-byte character in half
    body = body.decode("utf-8", "ignore").encode("utf-8")
    return _tag(msg.kind) + _U8.pack(len(body)) + body


def _encode_mouse(msg: MouseMessage) -> bytes:
    try:
        return _tag(msg.kind) + _I32.pack(msg.x) + _I32.pack(msg.y)
    except struct.error as e:
        raise ProtocolError(f"mouse position out of range: ({msg.x}, {msg.y})") from e


_ENCODERS: Dict[Kind, Callable[[object], bytes]] = {
    Kind.HOST:   _encode_bare,
    Kind.LEAVE:  _encode_bare,
    Kind.START:  _encode_bare,
    Kind.TEAM:   _encode_bare,
    Kind.SHOOT:  _encode_bare,
    Kind.JOIN:   _encode_join,
    Kind.WEAPON: _encode_weapon,
    Kind.MOVE:   _encode_move,
    Kind.CHAT:   _encode_chat,
    Kind.MOUSE:  _encode_mouse,
}


def encode(msg) -> bytes:
    """Encode one outbound message into a frame."""
    kind = getattr(msg, "kind", None)
    if not isinstance(kind, Kind):
        raise ProtocolError(f"not a protocol message: {msg!r}")
    encoder = _ENCODERS.get(kind)
    if encoder is None:
        raise NotSendable(f"{kind.name} is not sendable")
    return encoder(msg)
