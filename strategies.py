"""
Decision engines for paint-arena bots.

Each strategy takes a read-only ``Snapshot`` and returns exactly one
``Action``. Strategies never touch the socket; the bot session turns the
action into a frame. Any memory a strategy keeps (shot tiles, cached path,
tactical mode) lives on the instance, one instance per bot.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Type, Union

from protocol import Direction, PlayerState, Team, WorldState, team_tile
from world import MapView, Snapshot

log = logging.getLogger("PaintBot.strategy")

GridPos = Tuple[int, int]


class PlayerNotFound(Exception):
    """The bot's own player id is missing from the world state."""


# ═══════════════════════════════════════════════════════════════
#  ACTIONS
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Move:
    direction: Direction


@dataclass(frozen=True)
class Stop:
    direction: Direction


@dataclass(frozen=True)
class Shoot:
    pass


@dataclass(frozen=True)
class Look:
    """Aim at grid cell (x, y); the server turns the player toward that cell's centre."""
    x: int
    y: int


@dataclass(frozen=True)
class Idle:
    pass


Action = Union[Move, Stop, Shoot, Look, Idle]


# ═══════════════════════════════════════════════════════════════
#  GEOMETRY HELPERS
# ═══════════════════════════════════════════════════════════════

def grid_cell(x: float, y: float) -> GridPos:
    return math.floor(x), math.floor(y)


def cell_center(cell: GridPos) -> Tuple[float, float]:
    return cell[0] + 0.5, cell[1] + 0.5


def normalize_angle(angle: float) -> float:
    """Wrap an angle into [-pi, pi]."""
    return math.remainder(angle, 2 * math.pi)


def aim_error(player: PlayerState, x: float, y: float) -> float:
    bearing = math.atan2(y - player.y, x - player.x)
    return abs(normalize_angle(bearing - player.theta))


def direction_from_velocity(vx: int, vy: int) -> Optional[Direction]:
    if vx > 0:
        return Direction.RIGHT
    if vx < 0:
        return Direction.LEFT
    if vy > 0:
        return Direction.DOWN
    if vy < 0:
        return Direction.UP
    return None


def manhattan(a: GridPos, b: GridPos) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])


# ═══════════════════════════════════════════════════════════════
#  PATHFINDING — grid A*, cardinal moves, unit cost
# ═══════════════════════════════════════════════════════════════

_NEIGHBOUR_STEPS = ((1, 0), (-1, 0), (0, 1), (0, -1))


class _Node:
    __slots__ = ("x", "y", "g", "h", "parent")

    def __init__(self, x: int, y: int, g: int, h: int, parent: Optional["_Node"] = None):
        self.x, self.y = x, y
        self.g, self.h = g, h
        self.parent = parent

    @property
    def f(self) -> int:
        return self.g + self.h


def astar(grid: MapView, start: GridPos, goal: GridPos) -> List[GridPos]:
    """Shortest 4-connected path from ``start`` to ``goal``, both inclusive.

    Walls and off-grid cells are never expanded. The open list is re-sorted
    by f every iteration; the sort is stable, so equal f-scores come out in
    insertion order. Returns ``[]`` when the goal is unreachable.
    """
    if not grid.in_bounds(*start) or not grid.is_walkable(*goal):
        return []

    open_list: List[_Node] = [_Node(start[0], start[1], 0, manhattan(start, goal))]
    open_by_pos: Dict[GridPos, _Node] = {start: open_list[0]}
    closed = set()

    while open_list:
        open_list.sort(key=lambda n: n.f)
        current = open_list.pop(0)
        pos = (current.x, current.y)
        del open_by_pos[pos]
        if pos == goal:
            path = []
            node: Optional[_Node] = current
            while node is not None:
                path.append((node.x, node.y))
                node = node.parent
            path.reverse()
            return path
        closed.add(pos)

        for dx, dy in _NEIGHBOUR_STEPS:
            npos = (current.x + dx, current.y + dy)
            if not grid.is_walkable(*npos) or npos in closed:
                continue
            g = current.g + 1
            neighbour = open_by_pos.get(npos)
            if neighbour is None:
                neighbour = _Node(npos[0], npos[1], g, manhattan(npos, goal), current)
                open_list.append(neighbour)
                open_by_pos[npos] = neighbour
            elif g < neighbour.g:
                neighbour.g = g
                neighbour.parent = current
    return []


# ═══════════════════════════════════════════════════════════════
#  STRATEGY BASE
# ═══════════════════════════════════════════════════════════════

class Strategy:
    name = "base"

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def decide(self, snap: Snapshot) -> Action:
        raise NotImplementedError

    def find_me(self, snap: Snapshot) -> PlayerState:
        me = snap.world.find_player(snap.id)
        if me is None:
            raise PlayerNotFound(f"player {snap.id} not in world state")
        return me

    def random_direction(self) -> Direction:
        return self.rng.choice(list(Direction))


# ═══════════════════════════════════════════════════════════════
#  RANDOM
# ═══════════════════════════════════════════════════════════════

class RandomStrategy(Strategy):
    """Uniform noise generator, mostly useful as pure load."""

    name = "random"
    kinds = ("move", "stop", "shoot", "look")

    def decide(self, snap: Snapshot) -> Action:
        kind = self.rng.choice(self.kinds)
        if kind == "move":
            return Move(self.random_direction())
        if kind == "stop":
            return Stop(self.random_direction())
        if kind == "shoot":
            return Shoot()
        return Look(
            x = self.rng.randrange(max(snap.map.width, 1)),
            y = self.rng.randrange(max(snap.map.height, 1)),
        )


# ═══════════════════════════════════════════════════════════════
#  EASY — greedy local painter
# ═══════════════════════════════════════════════════════════════

EASY_AIM_TOLERANCE = math.pi / 8
SHOT_MEMORY_LIMIT  = 3   # a tile shot more often than this is skipped


class EasyStrategy(Strategy):
    """
    Paints whatever is next to it.

    Looks at the eight cells around its own cell, stops, turns to face one
    that is neither a wall nor already its colour, and shoots. Tiles it keeps
    shooting without effect are remembered and skipped for a while. With
    nothing to paint it wanders in a random direction until it would run
    into a wall or off the map.
    """

    name = "easy"

    def __init__(self, rng: Optional[random.Random] = None):
        super().__init__(rng)
        # tile index (y * width + x) → recent shot count
        self.shot_tiles: Dict[int, int] = {}

    def decide(self, snap: Snapshot) -> Action:
        me = self.find_me(snap)
        action, shot_key = self._choose(snap.map, me)
        self._decay(shot_key)
        return action

    def _choose(self, grid: MapView, me: PlayerState) -> Tuple[Action, Optional[int]]:
        moving    = direction_from_velocity(me.vx, me.vy)
        own_tile  = team_tile(me.team)
        candidates = [
            cell for cell in self._neighbours(grid, me)
            if not grid.is_wall(*cell)
            and grid.tile(*cell) != own_tile
            and self.shot_tiles.get(grid.index(*cell), 0) <= SHOT_MEMORY_LIMIT
        ]

        if candidates:
            if moving is not None:
                return Stop(moving), None
            target = self.rng.choice(candidates)
            cx, cy = cell_center(target)
            if aim_error(me, cx, cy) < EASY_AIM_TOLERANCE:
                key = grid.index(*target)
                self.shot_tiles[key] = self.shot_tiles.get(key, 0) + 1
                return Shoot(), key
            return Look(*target), None

        if moving is None:
            return Move(self.random_direction()), None

        # coasting: stop before the next half step leaves the map or hits a wall
        nx, ny = grid_cell(me.x + me.vx * 0.5, me.y + me.vy * 0.5)
        if not grid.is_walkable(nx, ny):
            return Stop(moving), None
        return Idle(), None

    def _decay(self, keep: Optional[int]):
        for key in list(self.shot_tiles):
            if key == keep:
                continue
            self.shot_tiles[key] -= 1
            if self.shot_tiles[key] <= 0:
                del self.shot_tiles[key]

    @staticmethod
    def _neighbours(grid: MapView, me: PlayerState) -> List[GridPos]:
        cx, cy = grid_cell(me.x, me.y)
        return [
            (cx + dx, cy + dy)
            for dy in (-1, 0, 1)
            for dx in (-1, 0, 1)
            if (dx or dy) and grid.in_bounds(cx + dx, cy + dy)
        ]


# ═══════════════════════════════════════════════════════════════
#  HARD — tactical modes + cached A* path
# ═══════════════════════════════════════════════════════════════

class Mode(Enum):
    EXPANSION  = "expansion"
    DEFENSE    = "defense"
    AGGRESSIVE = "aggressive"


DEFENSE_RADIUS     = 1.5   # enemy closer than this → back off
ENGAGE_RADIUS      = 3.0   # enemy closer than this → fight or flee on score
RETREAT_DISTANCE   = 2.0
ARRIVAL_RADIUS     = 0.3
HARD_AIM_TOLERANCE = 0.1


class HardStrategy(Strategy):
    """
    Tactical painter with path planning.

    Every tick it picks a mode from the nearest enemy's distance and the
    score, picks a target for that mode, keeps or replans an A* path to the
    target cell, drives along the path one cardinal direction at a time and
    fires once it is on course and facing the target.
    """

    name = "hard"

    def __init__(self, rng: Optional[random.Random] = None):
        super().__init__(rng)
        self.path: List[GridPos] = []
        self.mode = Mode.EXPANSION

    def decide(self, snap: Snapshot) -> Action:
        me   = self.find_me(snap)
        grid = snap.map

        mode = self._select_mode(snap.world, me)
        if mode is not self.mode:
            log.debug(f"[HARD] player {me.user_id} mode {self.mode.value} → {mode.value}")
            self.mode = mode

        target = self._choose_target(grid, snap.world, me)
        if target is None:
            return Move(self.random_direction())
        goal = grid_cell(*target)

        if not self._path_usable(grid, goal):
            self.path = astar(grid, grid_cell(me.x, me.y), goal)
        if not self.path:
            return Move(self.random_direction())

        if self._at(me, self.path[0]):
            self.path.pop(0)
        if not self.path:
            return self._aim(me, target, goal)

        wanted  = self._direction_to(me, self.path[0])
        current = direction_from_velocity(me.vx, me.vy)
        if current is None:
            return Move(wanted)
        if current is not wanted:
            return Stop(current)
        return self._aim(me, target, goal)

    # ── Mode and target selection ─────────────────────────────

    @staticmethod
    def _enemies(world: WorldState, me: PlayerState) -> List[PlayerState]:
        return [p for p in world.players if p.team != me.team]

    def _nearest_enemy(self, world: WorldState, me: PlayerState) -> Tuple[Optional[PlayerState], float]:
        nearest, best = None, math.inf
        for enemy in self._enemies(world, me):
            d = math.hypot(me.x - enemy.x, me.y - enemy.y)
            if d < best:
                nearest, best = enemy, d
        return nearest, best

    def _select_mode(self, world: WorldState, me: PlayerState) -> Mode:
        _, distance = self._nearest_enemy(world, me)
        if distance < DEFENSE_RADIUS:
            return Mode.DEFENSE
        if distance < ENGAGE_RADIUS:
            agg = world.aggregate
            if me.team == Team.TEAM_A:
                mine, theirs = agg.score_a, agg.score_b
            else:
                mine, theirs = agg.score_b, agg.score_a
            return Mode.AGGRESSIVE if mine >= theirs else Mode.DEFENSE
        return Mode.EXPANSION

    def _choose_target(self, grid: MapView, world: WorldState, me: PlayerState) -> Optional[Tuple[float, float]]:
        if self.mode is Mode.EXPANSION:
            return self._expansion_target(grid, me)
        enemy, _ = self._nearest_enemy(world, me)
        if enemy is None:
            return None
        if self.mode is Mode.AGGRESSIVE:
            return cell_center(grid_cell(enemy.x, enemy.y))

        dx, dy = me.x - enemy.x, me.y - enemy.y
        length = math.hypot(dx, dy) or 1.0
        tx = me.x + dx / length * RETREAT_DISTANCE
        ty = me.y + dy / length * RETREAT_DISTANCE
        gx = min(grid.width - 1, max(0, math.floor(tx)))
        gy = min(grid.height - 1, max(0, math.floor(ty)))
        return cell_center((gx, gy))

    @staticmethod
    def _expansion_target(grid: MapView, me: PlayerState) -> Optional[Tuple[float, float]]:
        own_tile = team_tile(me.team)
        best, best_dist = None, math.inf
        for y in range(grid.height):
            for x in range(grid.width):
                tile = grid.tile(x, y)
                if tile == own_tile or grid.is_wall(x, y):
                    continue
                cx, cy = x + 0.5, y + 0.5
                d = math.hypot(me.x - cx, me.y - cy)
                if d < best_dist:
                    best, best_dist = (cx, cy), d
        return best

    # ── Path bookkeeping ──────────────────────────────────────

    def _path_usable(self, grid: MapView, goal: GridPos) -> bool:
        if not self.path:
            return False
        if any(not grid.is_walkable(x, y) for x, y in self.path):
            return False
        return self.path[-1] == goal

    # ── Movement and aim ──────────────────────────────────────

    @staticmethod
    def _at(me: PlayerState, node: GridPos) -> bool:
        cx, cy = cell_center(node)
        return math.hypot(me.x - cx, me.y - cy) < ARRIVAL_RADIUS

    @staticmethod
    def _direction_to(me: PlayerState, node: GridPos) -> Direction:
        cx, cy = cell_center(node)
        dx, dy = cx - me.x, cy - me.y
        if abs(dx) > abs(dy):
            return Direction.RIGHT if dx > 0 else Direction.LEFT
        return Direction.DOWN if dy > 0 else Direction.UP

    @staticmethod
    def _aim(me: PlayerState, target: Tuple[float, float], goal: GridPos) -> Action:
        if aim_error(me, *target) < HARD_AIM_TOLERANCE:
            return Shoot()
        return Look(*goal)


# ═══════════════════════════════════════════════════════════════
#  REGISTRY
# ═══════════════════════════════════════════════════════════════

STRATEGIES: Dict[str, Type[Strategy]] = {
    RandomStrategy.name: RandomStrategy,
    EasyStrategy.name:   EasyStrategy,
    HardStrategy.name:   HardStrategy,
}


def create_strategy(name: str, rng: Optional[random.Random] = None) -> Strategy:
    try:
        cls = STRATEGIES[name.lower()]
    except KeyError:
        raise ValueError(
            f"unknown strategy {name!r}, choose from {', '.join(STRATEGIES)}"
        ) from None
    return cls(rng)
