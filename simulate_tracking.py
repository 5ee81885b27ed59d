#!/usr/bin/env python3
"""
Simulate a provider driving toward an order's destination.

Usage:
    python3 simulate_tracking.py <order_id>

Environment (read from .env as well):
    API_URL          base URL of the API (default http://localhost:8000)
    PROVIDER_TOKEN   Bearer token of the provider, or
    PROVIDER_ID      provider profile UUID; a token is signed with JWT_SECRET

The script:
  1. Loads the order as the provider and reads its destination.
  2. Departs the order if it is still only accepted.
  3. Places the provider 3 km south and pushes a fix every 2 seconds
     (20 steps, about 40 s) to PUT /api/v1/location.

A client watching the order sees the live position, route and ETA move.
"""

import asyncio
import math
import os
import sys

import httpx
import jwt
from dotenv import load_dotenv

load_dotenv()

from servicetrack.core.config import settings  # noqa: E402

# ─── Config ──────────────────────────────────────────────────────────────────

NUM_STEPS = 20
STEP_INTERVAL_S = 2.0
OFFSET_KM = 3.0  # Start 3 km away


# ─── Helpers ─────────────────────────────────────────────────────────────────

def offset_lat(lat: float, km: float) -> float:
    """Shift latitude by ~km (1° ≈ 111 km)."""
    return lat - km / 111.0


def interpolate(start: tuple[float, float], end: tuple[float, float], t: float):
    """Linear interpolation between two (lat, lng) points."""
    return (
        start[0] + (end[0] - start[0]) * t,
        start[1] + (end[1] - start[1]) * t,
    )


def remaining_km(lat: float, lng: float, dest: tuple[float, float]) -> float:
    return math.sqrt(
        ((dest[0] - lat) * 111) ** 2
        + ((dest[1] - lng) * 111 * math.cos(math.radians(lat))) ** 2
    )


def provider_token() -> str:
    token = os.getenv("PROVIDER_TOKEN")
    if token:
        return token
    provider_id = os.getenv("PROVIDER_ID")
    if not provider_id:
        print("Set PROVIDER_TOKEN or PROVIDER_ID.")
        sys.exit(1)
    return jwt.encode(
        {"sub": provider_id, "role": "provider"},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


# ─── Main ────────────────────────────────────────────────────────────────────

async def main():
    if len(sys.argv) < 2:
        print("Usage: simulate_tracking.py <order_id>")
        sys.exit(1)
    order_id = sys.argv[1]

    base_url = os.getenv("API_URL", "http://localhost:8000") + settings.api_v1_prefix
    headers = {"Authorization": f"Bearer {provider_token()}"}

    async with httpx.AsyncClient(base_url=base_url, headers=headers, timeout=10) as client:
        resp = await client.get(f"/orders/{order_id}")
        if resp.status_code != 200:
            print(f"Order {order_id} not available: {resp.status_code} {resp.text}")
            sys.exit(1)
        order = resp.json()

        if order["status"] == "accepted":
            resp = await client.post(f"/orders/{order_id}/depart")
            resp.raise_for_status()
            print("Order departed, tracking started")
        elif order["status"] != "en_route":
            print(f"Order is '{order['status']}'; it must be accepted or en_route.")
            sys.exit(1)

        dest = (float(order["client_lat"]), float(order["client_lng"]))
        print(f"Destination: ({dest[0]:.6f}, {dest[1]:.6f})")

        # Provider starts ~3 km south
        start = (offset_lat(dest[0], OFFSET_KM), dest[1] + 0.005)
        print(f"Provider start: ({start[0]:.6f}, {start[1]:.6f})")
        print(f"   Moving in {NUM_STEPS} steps, {STEP_INTERVAL_S}s each…\n")

        for i in range(NUM_STEPS + 1):
            t = i / NUM_STEPS
            lat, lng = interpolate(start, dest, t)

            resp = await client.put(
                "/location", json={"lat": round(lat, 7), "lng": round(lng, 7)}
            )
            if resp.status_code == 409:
                print("Tracking stopped on the server; exiting.")
                return
            resp.raise_for_status()

            bar = "█" * int(t * 30) + "░" * (30 - int(t * 30))
            print(
                f"  [{bar}] {t*100:5.1f}%  "
                f"({lat:.6f}, {lng:.6f})  "
                f"{remaining_km(lat, lng, dest):.2f} km left"
            )

            if i < NUM_STEPS:
                await asyncio.sleep(STEP_INTERVAL_S)

    print("\nProvider has arrived at the destination.")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
