"""
Reconnecting client against a running simulator.

Reads a few events, drops the connection, then reconnects with Last-Event-ID and
shows that only the missed events are replayed.

Usage:
    sse-simulator serve --port 3000
    python examples/resume_client.py
"""

import asyncio
import logging

import httpx
from httpx_sse import aconnect_sse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

URL = "http://localhost:3000/sse/test"
PARAMS = {"interval": 200, "streamId": "resume-demo", "retry": 1000}


async def read_events(client: httpx.AsyncClient, count: int, last_event_id: str = None) -> str:
    headers = {"Last-Event-ID": last_event_id} if last_event_id else {}
    async with aconnect_sse(client, "GET", URL, params=PARAMS, headers=headers) as source:
        seen = 0
        async for sse in source.aiter_sse():
            logger.info(f"{sse.event:>10} id={sse.id or '-'} data={sse.data[:60]}")
            if sse.event == "message":
                last_event_id = sse.id
                seen += 1
                if seen == count:
                    break
    return last_event_id


async def main():
    async with httpx.AsyncClient(timeout=None) as client:
        last_event_id = await read_events(client, 3)
        logger.info(f"Disconnected after id {last_event_id}, waiting before reconnect")
        await asyncio.sleep(1)
        await read_events(client, 3, last_event_id)


if __name__ == "__main__":
    asyncio.run(main())
