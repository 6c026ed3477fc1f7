"""
Simulate a Strava push notification against a local server.

Usage:
    python scripts/simulate_webhook.py --athlete 987654 --activity 123456789
    python scripts/simulate_webhook.py --aspect delete --activity 123456789
    python scripts/simulate_webhook.py --verify --token my_verify_token
"""
import argparse
import asyncio
import logging
import time

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


async def send_event(activity_id: int, athlete_id: int, aspect: str):
    """POST an activity event like Strava does."""
    payload = {
        "object_type": "activity",
        "object_id": activity_id,
        "aspect_type": aspect,
        "owner_id": athlete_id,
        "subscription_id": 1,
        "event_time": int(time.time()),
        "updates": {},
    }
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{BASE_URL}/api/webhooks/strava", json=payload)
        logger.info("Webhook response: %s %s", resp.status_code, resp.json())
        return resp


async def send_handshake(verify_token: str):
    """GET the subscription handshake like Strava does when subscribing."""
    params = {
        "hub.mode": "subscribe",
        "hub.verify_token": verify_token,
        "hub.challenge": "15f7d1a91c1f40f8a748fd134752feb3",
    }
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.get(f"{BASE_URL}/api/webhooks/strava", params=params)
        logger.info("Handshake response: %s %s", resp.status_code, resp.text)
        return resp


async def main():
    global BASE_URL
    parser = argparse.ArgumentParser(description="Simulate Strava webhook traffic")
    parser.add_argument("--activity", type=int, default=123456789)
    parser.add_argument("--athlete", type=int, default=987654)
    parser.add_argument("--aspect", default="create", choices=["create", "update", "delete"])
    parser.add_argument("--verify", action="store_true", help="Send the subscription handshake instead")
    parser.add_argument("--token", default="", help="Verify token for --verify")
    parser.add_argument("--base-url", default=BASE_URL)
    args = parser.parse_args()

    BASE_URL = args.base_url
    if args.verify:
        await send_handshake(args.token)
    else:
        await send_event(args.activity, args.athlete, args.aspect)


if __name__ == "__main__":
    asyncio.run(main())
