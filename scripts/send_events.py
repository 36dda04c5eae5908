#!/usr/bin/env python3
"""
Test Client - Telemetry Producer

Streams binary event frames to a running ingest bridge:
1. Connects to the ingestion endpoint
2. Sends N random payloads (or the contents of the given files)
3. Closes with a normal close handshake, or drops the connection
   without one when --abort is given

Usage:
    python scripts/send_events.py --count 100
    python scripts/send_events.py --url ws://localhost:8000/ events/*.bin
    python scripts/send_events.py --count 50 --abort

Start the bridge first:
    python -m ingest_bridge
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

import websockets

BRIDGE_URL = "ws://localhost:8000/"


def load_payloads(args: argparse.Namespace) -> list[bytes]:
    """Payloads from files if given, otherwise random bytes."""
    if args.files:
        return [Path(f).read_bytes() for f in args.files]
    return [os.urandom(args.size) for _ in range(args.count)]


async def main(args: argparse.Namespace) -> int:
    payloads = load_payloads(args)

    print("=" * 70)
    print("TELEMETRY PRODUCER STARTING")
    print("=" * 70)
    print(f"Bridge URL: {args.url}")
    print(f"Events: {len(payloads)}")
    print("=" * 70)

    try:
        async with websockets.connect(args.url) as ws:
            for i, payload in enumerate(payloads):
                await ws.send(payload)
                if args.interval:
                    await asyncio.sleep(args.interval)
                if (i + 1) % 100 == 0:
                    print(f"  sent {i + 1}/{len(payloads)}")

            if args.abort:
                # Drop the TCP connection without a close frame
                print("Aborting connection without close handshake")
                ws.transport.abort()
                return 0

            print(f"Sent {len(payloads)} events, closing")
    except (OSError, websockets.exceptions.WebSocketException) as e:
        print(f"Connection failed: {e}")
        return 1

    return 0


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send binary telemetry frames to the ingest bridge")
    parser.add_argument("files", nargs="*", help="Files whose contents are sent as frames")
    parser.add_argument("--url", default=BRIDGE_URL, help="Bridge WebSocket URL")
    parser.add_argument("--count", type=int, default=10, help="Random frames to send")
    parser.add_argument("--size", type=int, default=256, help="Random frame size in bytes")
    parser.add_argument("--interval", type=float, default=0.0, help="Seconds between frames")
    parser.add_argument("--abort", action="store_true", help="Drop the connection instead of closing")
    return parser.parse_args(argv)


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args(sys.argv[1:]))))
