#!/usr/bin/env python3
"""
Debug tool — print every RAW frame the server sends, decoded where possible.
Run: python3 debug_frames.py [--room ABCD] [--seconds 10]
"""
import argparse
import asyncio
import os
import sys
import time

import aiohttp

from protocol import JoinMessage, Kind, KIND_COUNT, ProtocolError, decode, encode

WS_URL = os.getenv("PAINTBOT_WS_URL", "ws://localhost:3000/ws")


def describe_frame(data: bytes) -> str:
    """One line per frame: kind, size, decoded payload or why it failed."""
    if not data:
        return "<empty frame>"
    tag  = data[0]
    name = Kind(tag).name if tag < KIND_COUNT else f"#{tag}"
    head = f"{name:<9} {len(data):>5}B"
    try:
        return f"{head}  {decode(data)}"
    except ProtocolError as e:
        return f"{head}  ❌ {type(e).__name__}: {e}  raw={data[:32].hex()}"


async def probe(url: str, room: str = None, seconds: float = 10.0):
    print("=" * 60)
    print(f"  WS URL  : {url}")
    print(f"  ROOM    : {room or '-'}")
    print("=" * 60)

    async with aiohttp.ClientSession() as session:
        try:
            ws = await session.ws_connect(url)
        except aiohttp.ClientError as e:
            print(f"  ❌ Cannot connect: {e}")
            return 1

        async with ws:
            if room:
                await ws.send_bytes(encode(JoinMessage(room)))
                print(f"  → JOIN {room}")

            deadline = time.monotonic() + seconds
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    msg = await ws.receive(timeout=remaining)
                except asyncio.TimeoutError:
                    break
                if msg.type == aiohttp.WSMsgType.BINARY:
                    print(f"  ← {describe_frame(msg.data)}")
                elif msg.type == aiohttp.WSMsgType.TEXT:
                    print(f"  ← TEXT {msg.data[:200]!r}")
                else:
                    print(f"  ⏹ {msg.type.name}")
                    break
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Dump decoded server frames")
    parser.add_argument("--url", default=WS_URL)
    parser.add_argument("--room", default=None)
    parser.add_argument("--seconds", type=float, default=10.0)
    args = parser.parse_args(argv)
    return asyncio.run(probe(args.url, args.room, args.seconds))


if __name__ == "__main__":
    sys.exit(main())
