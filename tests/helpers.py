"""
Frame and snapshot builders shared by the test modules.
"""
import os
import struct
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from protocol import (
    Aggregate, GamePhase, Kind, PlayerState, Team, Tile, WorldState,
)
from world import MapView, Snapshot


# ────────────────────────────────────────────────────────────────────────────
# Raw frames, built by hand so the decoder is checked against the byte layout
# ────────────────────────────────────────────────────────────────────────────

def short_str(text):
    data = text.encode("utf-8")
    return struct.pack("<B", len(data)) + data


def connected_frame(user_id=1, username="bot1"):
    return bytes([Kind.CONNECTED]) + struct.pack("<h", user_id) + short_str(username)


def joined_frame(room=b"ROOM"):
    return bytes([Kind.JOINED]) + room


def hosted_frame(room=b"HOST"):
    return bytes([Kind.HOSTED]) + room


def left_frame():
    return bytes([Kind.LEFT])


def shot_frame(*cells):
    body = struct.pack("<B", len(cells))
    for x, y, state in cells:
        body += struct.pack("<iiB", x, y, state)
    return bytes([Kind.SHOT]) + body


def map_frame(width, height, tiles=None):
    if tiles is None:
        tiles = bytes(width * height)
    return bytes([Kind.MAP]) + struct.pack("<ii", width, height) + bytes(tiles)


def player_bytes(user_id, team=Team.TEAM_A, weapon=0, x=0.5, y=0.5,
                 vx=0, vy=0, theta=0.0, cooldown=0, username="bot"):
    return struct.pack(
        "<hBBffiifB", user_id, team, weapon, x, y, vx, vy, theta, cooldown
    ) + short_str(username)


def state_frame(players=(), phase=GamePhase.PLAYING, unix=0, host=1,
                room=b"ROOM", scores=(0, 0, 0, 0)):
    body  = struct.pack("<h", host) + room + struct.pack("<i", unix)
    body += struct.pack("<iiiiB", *scores, phase)
    body += struct.pack("<B", len(players))
    for player in players:
        body += player_bytes(**player)
    return bytes([Kind.STATE]) + body


# ────────────────────────────────────────────────────────────────────────────
# Decoded values for strategy tests
# ────────────────────────────────────────────────────────────────────────────

def player(user_id=1, team=Team.TEAM_A, x=0.5, y=0.5, vx=0, vy=0, theta=0.0):
    return PlayerState(
        user_id=user_id, username=f"bot{user_id}", team=team, weapon=0,
        x=x, y=y, vx=vx, vy=vy, theta=theta, cooldown=0,
    )


def grid(width, height, fill=Tile.EMPTY, **overrides):
    """Map view filled with ``fill``; overrides are ``t<x>_<y>=Tile``."""
    tiles = bytearray([fill]) * (width * height)
    for key, tile in overrides.items():
        x, y = (int(v) for v in key[1:].split("_"))
        tiles[y * width + x] = tile
    return MapView(width, height, bytes(tiles))


def snapshot(map_view, players, my_id=1, scores=(0, 0, 0, 0)):
    world = WorldState(
        host_id=1, room="ROOM", started_at=None,
        aggregate=Aggregate(*scores, GamePhase.PLAYING),
        players=tuple(players),
    )
    return Snapshot(id=my_id, map=map_view, world=world)
