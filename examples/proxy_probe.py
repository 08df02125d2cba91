"""
Point this at a proxy in front of the simulator to check that it streams SSE
unbuffered: every event should arrive roughly one interval after the previous one.

Usage:
    python examples/proxy_probe.py http://my-proxy:8080
"""

import asyncio
import sys
import time

import httpx
from httpx_sse import aconnect_sse


async def probe(base_url: str, interval_ms: int = 500, events: int = 5) -> None:
    params = {"interval": interval_ms, "maxEvents": events, "streamId": f"probe-{time.time()}"}
    async with httpx.AsyncClient(base_url=base_url, timeout=None) as client:
        async with aconnect_sse(client, "GET", "/sse/test", params=params) as source:
            last = time.monotonic()
            async for sse in source.aiter_sse():
                now = time.monotonic()
                print(f"{sse.event:>10} id={sse.id or '-':>3} gap={now - last:.3f}s")
                last = now


if __name__ == "__main__":
    asyncio.run(probe(sys.argv[1] if len(sys.argv) > 1 else "http://localhost:3000"))
