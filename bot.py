#!/usr/bin/env python3
"""
╔══════════════════════════════════════════════════════════════════╗
║          PAINT ARENA — BOT SWARM                                 ║
║          Load testing & AI sparring for the paint server         ║
║                                                                  ║
║  Every bot owns one websocket, one session, one strategy:        ║
║    1. CONNECT  → open socket, server assigns an identity         ║
║    2. JOIN     → enter the shared room                           ║
║    3. TICK     → decide one action from the latest snapshot      ║
║    4. CLOSE    → leave the room, release socket and log file     ║
╚══════════════════════════════════════════════════════════════════╝
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import aiohttp
from aiohttp import WSMsgType

from protocol import (
    ChatMessage, ChattedMessage, ConnectedMessage, Direction, ErrorMessage,
    HostMessage, HostedMessage, JoinMessage, JoinedMessage, LeaveMessage,
    LeftMessage, MapMessage, MouseMessage, MoveMessage, ProtocolError,
    ShootMessage, ShotMessage, StartMessage, StateMessage, SystemMessage,
    TeamMessage, WeaponMessage, WorldState, decode, encode,
)
from strategies import (
    STRATEGIES, Action, Idle, Look, Move, PlayerNotFound, Shoot, Stop,
    Strategy, create_strategy,
)
from world import GameMap, Identity, MapNotInitialized, Snapshot

# ═══════════════════════════════════════════════════════════════
#  CONFIGURATION  (environment variables, overridden by CLI flags)
# ═══════════════════════════════════════════════════════════════

WS_URL           = os.getenv("PAINTBOT_WS_URL",   "ws://localhost:3000/ws")
STRATEGY         = os.getenv("PAINTBOT_STRATEGY", "easy")
TICKS_PER_SECOND = float(os.getenv("PAINTBOT_TICKS_PER_SECOND", "60"))
LOG_DIR          = os.getenv("PAINTBOT_LOG_DIR",  "logs")
LOG_LEVEL        = os.getenv("LOG_LEVEL",         "INFO")

DEFAULT_AMOUNT   = 10
JOIN_SETTLE_SEC  = 1.0    # give the server time to seat everyone before ticking
CONNECT_TIMEOUT  = 10.0

# ═══════════════════════════════════════════════════════════════
#  LOGGING
# ═══════════════════════════════════════════════════════════════

LOG_FORMAT  = "%(asctime)s  [%(levelname)-8s]  %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

log = logging.getLogger("PaintBot")


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _bot_logger(bot_id: int, log_dir: Optional[str]):
    """Per-bot logger; writes to ``<log_dir>/<id>.log`` when a dir is given."""
    logger  = logging.getLogger(f"PaintBot.bot{bot_id}")
    handler = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handler = logging.FileHandler(
            os.path.join(log_dir, f"{bot_id}.log"), mode="w", encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    else:
        logger.propagate = True
    return logger, handler


# ═══════════════════════════════════════════════════════════════
#  SESSION STATE
# ═══════════════════════════════════════════════════════════════

class TransportFailure(Exception):
    """The socket failed; the bot can no longer take part."""


class BotState(Enum):
    CONNECTING = "connecting"
    ACTIVE     = "active"
    INACTIVE   = "inactive"


class GameState(Enum):
    IDLE    = "idle"
    IN_ROOM = "in_room"
    PLAYING = "playing"


# ═══════════════════════════════════════════════════════════════
#  GAME BOT — one connection, one view of the world
# ═══════════════════════════════════════════════════════════════

class GameBot:
    """
    A single emulated player.

    Connection axis: CONNECTING → ACTIVE → INACTIVE (socket error, server
    close or ``close()``). Game axis: IDLE → IN_ROOM → PLAYING, driven only
    by server messages while ACTIVE.

    Frames are applied one at a time on the event loop, and strategies run
    synchronously inside ``update()``, so a snapshot is never torn.
    """

    def __init__(self, bot_id: int, strategy: Strategy, url: str,
                 http: aiohttp.ClientSession, log_dir: Optional[str] = None):
        self.id       = bot_id
        self.strategy = strategy
        self.url      = url
        self.http     = http

        self.state:           BotState  = BotState.CONNECTING
        self.game_state:      GameState = GameState.IDLE
        self.inactive_reason: Optional[str] = None

        self.identity: Optional[Identity]   = None
        self.room:     Optional[str]        = None
        self.map:      Optional[GameMap]    = None
        self.world:    Optional[WorldState] = None

        self.ws:          Optional[aiohttp.ClientWebSocketResponse] = None
        self._connecting: Optional[asyncio.Future] = None
        self._reader:     Optional[asyncio.Task]   = None
        self._closed = False

        self.stat_frames  = 0
        self.stat_dropped = 0
        self.stat_actions = 0

        self.log, self._log_handler = _bot_logger(bot_id, log_dir)
        self.log.info("Connecting...")

    @property
    def name(self) -> str:
        return f"Bot {self.id}"

    @property
    def player_id(self) -> Optional[int]:
        return self.identity.id if self.identity else None

    @property
    def player_name(self) -> Optional[str]:
        return self.identity.username if self.identity else None

    # ── Connection lifecycle ──────────────────────────────────

    async def _open(self) -> aiohttp.ClientWebSocketResponse:
        return await self.http.ws_connect(self.url)

    async def connect(self):
        """Wait until the socket is open; raise TransportFailure if it never is."""
        if self.state is BotState.CONNECTING and self._connecting is None:
            self._connecting = asyncio.ensure_future(self._open())
            try:
                ws = await self._connecting
            except asyncio.CancelledError:
                if not self._closed:
                    raise
                self._fail("closed while connecting")
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                self._fail(str(e) or type(e).__name__)
            else:
                if self._closed:
                    await ws.close()
                    self._fail("closed while connecting")
                else:
                    self.ws    = ws
                    self.state = BotState.ACTIVE
                    self.log.info(f"[WS] Connected to {self.url}")
                    self._reader = asyncio.ensure_future(self._recv_loop())

        if self.state is BotState.INACTIVE:
            raise TransportFailure(self.inactive_reason)

    def _fail(self, reason: str):
        if self.state is BotState.INACTIVE:
            return
        self.state           = BotState.INACTIVE
        self.inactive_reason = reason
        self.log.error(f"[WS] Error: {reason}")

    async def _recv_loop(self):
        ws = self.ws
        async for msg in ws:
            if msg.type == WSMsgType.BINARY:
                self.handle_frame(msg.data)
            elif msg.type == WSMsgType.ERROR:
                self._fail(f"socket error: {ws.exception()}")
                return
            else:
                self.log.debug(f"[WS] Ignoring {msg.type.name} frame")
        if not self._closed:
            self._fail(f"closed by server (code {ws.close_code})")

    async def close(self):
        """Leave the room if seated, release the socket and the log file. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._connecting is not None and not self._connecting.done():
            self._connecting.cancel()

        ws = self.ws
        if ws is not None and not ws.closed:
            try:
                if self.state is BotState.ACTIVE and self.game_state is not GameState.IDLE:
                    await ws.send_bytes(encode(LeaveMessage()))
                    self.log.info("[ROOM] Sent leave")
                await ws.close()
            except (ConnectionError, aiohttp.ClientError) as e:
                self.log.warning(f"[WS] Error while closing: {e}")

        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass

        if self.state is not BotState.INACTIVE:
            self.state           = BotState.INACTIVE
            self.inactive_reason = "closed"
        self.map   = None
        self.world = None
        self.log.info("Closed")
        if self._log_handler is not None:
            self.log.removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    # ── Inbound ───────────────────────────────────────────────

    def handle_frame(self, data: bytes):
        """Decode and apply one frame. Bad frames are logged and dropped."""
        if self.state is not BotState.ACTIVE:
            self.log.debug(f"[WS] Dropping frame while {self.state.value}")
            return
        self.stat_frames += 1
        try:
            self._apply(decode(data))
        except (ProtocolError, MapNotInitialized) as e:
            self.stat_dropped += 1
            self.log.warning(f"[PROTO] Dropped frame: {e}")

    def _apply(self, msg):
        if isinstance(msg, ConnectedMessage):
            if self.identity is not None:
                self.log.warning(f"[WS] Ignoring second identity {msg.id}/{msg.username}")
                return
            self.identity = Identity(msg.id, msg.username)
            self.log.info(f"Playing as {msg.username}")

        elif isinstance(msg, (JoinedMessage, HostedMessage)):
            if self.game_state is not GameState.IDLE:
                self.log.warning(f"[ROOM] {type(msg).__name__} {msg.room} while {self.game_state.value}")
                return
            self.room       = msg.room
            self.game_state = GameState.IN_ROOM
            verb = "Joined" if isinstance(msg, JoinedMessage) else "Hosted"
            self.log.info(f"[ROOM] {verb} room {msg.room}")

        elif isinstance(msg, LeftMessage):
            if self.game_state is GameState.IDLE:
                return
            self.room       = None
            self.game_state = GameState.IDLE
            self.log.info("[ROOM] Left room")

        elif isinstance(msg, StateMessage):
            self.world = msg.world
            if self.game_state is GameState.IDLE:
                return
            phase = GameState.PLAYING if msg.world.is_playing else GameState.IN_ROOM
            if phase is not self.game_state:
                self.log.info(f"[STATE] {self.game_state.value} → {phase.value}")
                self.game_state = phase

        elif isinstance(msg, MapMessage):
            self.map = GameMap.from_message(msg)
            self.log.info(f"[MAP] {msg.width}x{msg.height}")

        elif isinstance(msg, ShotMessage):
            if self.map is None:
                raise MapNotInitialized("shot patch before any map")
            self.map.apply_patch(msg.cells)

        elif isinstance(msg, ChattedMessage):
            self.log.info(f"[CHAT] {msg.sender}: {msg.message}")

        elif isinstance(msg, SystemMessage):
            self.log.info(f"[SYSTEM] {msg.subtype.name}: {msg.message}")

        elif isinstance(msg, ErrorMessage):
            self.log.error(f"[ERROR] Error: {msg.message}")

    def snapshot(self) -> Optional[Snapshot]:
        """Frozen view for the strategy, or None until identity, map and state are known."""
        if self.identity is None or self.map is None or self.world is None:
            return None
        return Snapshot(id=self.identity.id, map=self.map.view(), world=self.world)

    # ── Outbound ──────────────────────────────────────────────

    async def _send(self, msg):
        if self.ws is None or self.state is not BotState.ACTIVE:
            raise TransportFailure(self.inactive_reason or "not connected")
        frame = encode(msg)
        try:
            await self.ws.send_bytes(frame)
        except (ConnectionError, aiohttp.ClientError) as e:
            self._fail(f"send failed: {e}")
            raise TransportFailure(self.inactive_reason) from e

    async def join(self, room: str):
        if self.state is not BotState.ACTIVE:
            return
        if self.game_state is not GameState.IDLE:
            self.log.info("[ROOM] Asked to join while in room")
            return
        await self._send(JoinMessage(room))
        self.log.info(f"[ROOM] Sent join {room}")

    async def host(self):
        if self.state is not BotState.ACTIVE:
            return
        if self.game_state is not GameState.IDLE:
            self.log.info("[ROOM] Asked to host while in room")
            return
        await self._send(HostMessage())
        self.log.info("[ROOM] Sent host")

    async def leave(self):
        if self.state is not BotState.ACTIVE:
            return
        if self.game_state is GameState.IDLE:
            self.log.info("[ROOM] Asked to leave while idle")
            return
        await self._send(LeaveMessage())
        self.log.info("[ROOM] Sent leave")

    async def start(self):
        if self.state is not BotState.ACTIVE or self.game_state is not GameState.IN_ROOM:
            return
        await self._send(StartMessage())
        self.log.info("[ROOM] Sent start")

    async def switch_team(self):
        if self.state is not BotState.ACTIVE or self.game_state is GameState.IDLE:
            return
        await self._send(TeamMessage())

    async def select_weapon(self, weapon: int):
        if self.state is not BotState.ACTIVE:
            return
        await self._send(WeaponMessage(weapon))

    async def chat(self, message: str):
        if self.state is not BotState.ACTIVE:
            return
        await self._send(ChatMessage(message))

    async def start_moving(self, direction: Direction):
        await self._send(MoveMessage(direction, start=True))

    async def stop_moving(self, direction: Direction):
        await self._send(MoveMessage(direction, start=False))

    async def move_mouse(self, x: int, y: int):
        await self._send(MouseMessage(x, y))

    async def shoot(self):
        await self._send(ShootMessage())

    # ── Tick ──────────────────────────────────────────────────

    async def update(self) -> Optional[Action]:
        """Run one decision and send it. Returns the action, or None when not playing."""
        if self.state is not BotState.ACTIVE or self.game_state is not GameState.PLAYING:
            return None
        snap = self.snapshot()
        if snap is None:
            return None

        try:
            action = self.strategy.decide(snap)
        except PlayerNotFound as e:
            self.log.warning(f"[ACT] {e}; idling this tick")
            action = Idle()

        self.log.debug(f"[ACT] {action}")
        await self.perform(action)
        self.stat_actions += 1
        return action

    async def perform(self, action: Action):
        if isinstance(action, Move):
            await self.start_moving(action.direction)
        elif isinstance(action, Stop):
            await self.stop_moving(action.direction)
        elif isinstance(action, Shoot):
            await self.shoot()
        elif isinstance(action, Look):
            await self.move_mouse(action.x, action.y)
        elif isinstance(action, Idle):
            pass
        else:
            raise TypeError(f"unknown action {action!r}")


# ═══════════════════════════════════════════════════════════════
#  SWARM — connect many bots and drive the tick loop
# ═══════════════════════════════════════════════════════════════

@dataclass
class SwarmConfig:
    room:             str
    amount:           int             = DEFAULT_AMOUNT
    url:              str             = WS_URL
    strategy:         str             = STRATEGY
    ticks_per_second: float           = TICKS_PER_SECOND
    duration:         Optional[float] = None   # seconds; None runs until interrupted
    log_dir:          Optional[str]   = LOG_DIR


class Swarm:

    def __init__(self, config: SwarmConfig):
        self.config = config
        self.bots: List[GameBot] = []

        self.stat_connected = 0
        self.stat_active    = 0
        self.stat_ticks     = 0

    async def run(self) -> int:
        cfg = self.config
        log.info("=" * 60)
        log.info(f"  🎨  PAINT SWARM  |  {cfg.amount} × {cfg.strategy}  |  room {cfg.room}")
        log.info(f"  🌐  Server: {cfg.url}")
        log.info("=" * 60)

        connector = aiohttp.TCPConnector(limit=0)
        timeout   = aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT)
        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as http:
            self.bots = [
                GameBot(i + 1, create_strategy(cfg.strategy), cfg.url, http, cfg.log_dir)
                for i in range(cfg.amount)
            ]
            try:
                return await self._run()
            finally:
                self.stat_active = sum(1 for bot in self.bots if bot.state is BotState.ACTIVE)
                log.info("[SWARM] Closing bots...")
                await asyncio.gather(*(bot.close() for bot in self.bots))
                self._print_summary()

    async def _run(self) -> int:
        cfg = self.config

        results = await asyncio.gather(*(bot.connect() for bot in self.bots), return_exceptions=True)
        failed  = False
        for bot, result in zip(self.bots, results):
            if isinstance(result, TransportFailure):
                log.error(f"[SWARM] {bot.name} failed to connect: {result}")
                failed = True
            elif isinstance(result, BaseException):
                raise result
        if failed:
            return 1
        self.stat_connected = len(self.bots)

        results = await asyncio.gather(*(bot.join(cfg.room) for bot in self.bots), return_exceptions=True)
        self._drop_failed(self.bots, results, "failed to join")
        await asyncio.sleep(JOIN_SETTLE_SEC)

        loop      = asyncio.get_running_loop()
        deadline  = loop.time() + cfg.duration if cfg.duration else None
        tick_time = 1.0 / cfg.ticks_per_second

        while deadline is None or loop.time() < deadline:
            await asyncio.sleep(tick_time)
            active = [bot for bot in self.bots if bot.state is BotState.ACTIVE]
            if not active:
                log.error("[SWARM] No active bots left")
                return 1
            results = await asyncio.gather(*(bot.update() for bot in active), return_exceptions=True)
            self._drop_failed(active, results, "dropped")
            self.stat_ticks += 1
        return 0

    @staticmethod
    def _drop_failed(bots, results, what: str):
        """Log bots whose step hit a TransportFailure; re-raise anything else."""
        for bot, result in zip(bots, results):
            if isinstance(result, TransportFailure):
                log.warning(f"[SWARM] {bot.name} {what}: {result}")
            elif isinstance(result, BaseException):
                raise result

    def _print_summary(self):
        log.info("=" * 60)
        log.info("  📊  SWARM SUMMARY")
        log.info(f"  Bots connected : {self.stat_connected}/{len(self.bots)}")
        log.info(f"  Active at end  : {self.stat_active}")
        log.info(f"  Ticks run      : {self.stat_ticks}")
        log.info(f"  Actions sent   : {sum(bot.stat_actions for bot in self.bots)}")
        log.info(f"  Frames dropped : {sum(bot.stat_dropped for bot in self.bots)}")
        log.info("=" * 60)


# ═══════════════════════════════════════════════════════════════
#  ENTRY POINT
# ═══════════════════════════════════════════════════════════════

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Paint arena bot swarm")
    parser.add_argument("--room", required=True, help="4-character room code to join")
    parser.add_argument("--amount", type=int, default=DEFAULT_AMOUNT, help="number of bots")
    parser.add_argument("--url", default=WS_URL, help="game server websocket URL")
    parser.add_argument("--strategy", default=STRATEGY, choices=sorted(STRATEGIES))
    parser.add_argument("--tps", type=float, default=TICKS_PER_SECOND, help="decisions per second")
    parser.add_argument("--duration", type=float, default=None, help="stop after this many seconds")
    parser.add_argument("--log-dir", default=LOG_DIR, help="per-bot log directory ('' disables)")
    parser.add_argument("--log-level", default=LOG_LEVEL)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    config = SwarmConfig(
        room             = args.room,
        amount           = args.amount,
        url              = args.url,
        strategy         = args.strategy,
        ticks_per_second = args.tps,
        duration         = args.duration,
        log_dir          = args.log_dir or None,
    )
    try:
        return asyncio.run(Swarm(config).run())
    except KeyboardInterrupt:
        log.info("[SWARM] 👋 Stopped.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
