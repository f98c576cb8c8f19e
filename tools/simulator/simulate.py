#!/usr/bin/env python3
"""NoiseMap report simulator.

Generates noise report traffic around a few noise sources, so that many
submissions land close to each other and exercise the merge engine.

Usage:
    # 20 users reporting around 5 noise sources in Manhattan for 2 minutes
    python -m tools.simulator.simulate --server http://localhost:8000 --users 20 --sources 5 --duration 120

    # Stress test: 100 users, fast rate
    python -m tools.simulator.simulate --server http://localhost:8000 --users 100 --reports-per-minute 30

    # Specific location
    python -m tools.simulator.simulate --server http://localhost:8000 --center 45.764,4.835
"""

from __future__ import annotations

import argparse
import asyncio
import json
import math
import random
import time
import uuid
from dataclasses import dataclass

import httpx

CATEGORIES = ["Fireworks", "Protests", "Sports", "Construction"]
BLAST_RADII = ["Small", "Medium", "Large"]

_DESCRIPTIONS = {
    "Fireworks": ["loud bangs", "fireworks over the park", "whistling rockets"],
    "Protests": ["megaphones", "chanting crowd", "drums and horns"],
    "Sports": ["stadium crowd", "air horns after the game", "PA announcements"],
    "Construction": ["jackhammer noise", "pile driver", "concrete saw"],
}


@dataclass
class NoiseSource:
    lat: float
    lon: float
    category: str
    zip_code: str


@dataclass
class SimUser:
    user_id: str
    name: str
    reports_sent: int = 0
    merged: int = 0
    errors: int = 0


def offset_point(lat: float, lon: float, max_km: float) -> tuple[float, float]:
    """Random point within max_km of (lat, lon)."""
    angle = random.uniform(0, 2 * math.pi)
    dist_km = random.uniform(0, max_km)
    # Approximate: 1 degree latitude ≈ 111 km
    dlat = (dist_km / 111.0) * math.cos(angle)
    dlon = (dist_km / (111.0 * math.cos(math.radians(lat)))) * math.sin(angle)
    return lat + dlat, lon + dlon


def make_report_payload(source: NoiseSource, spread_km: float) -> dict:
    """Create a report JSON payload near a noise source."""
    lat, lon = offset_point(source.lat, source.lon, spread_km)
    return {
        "latitude": round(lat, 6),
        "longitude": round(lon, 6),
        "zip_code": source.zip_code,
        "noise_type": source.category,
        "noise_level": random.randint(3, 10),
        "blast_radius": random.choices(BLAST_RADII, weights=[50, 35, 15])[0],
        "description": random.choice(_DESCRIPTIONS[source.category]),
    }


async def run_user(
    client: httpx.AsyncClient,
    user: SimUser,
    sources: list[NoiseSource],
    server_url: str,
    reports_per_minute: float,
    duration_seconds: float,
    spread_km: float,
) -> None:
    """Simulate a single user submitting reports."""
    interval = 60.0 / reports_per_minute
    end_time = time.monotonic() + duration_seconds
    headers = {
        "content-type": "application/json",
        "x-user-id": user.user_id,
        "x-user-name": user.name,
    }

    while time.monotonic() < end_time:
        payload = make_report_payload(random.choice(sources), spread_km)
        try:
            resp = await client.post(
                f"{server_url}/api/v1/reports",
                content=json.dumps(payload),
                headers=headers,
            )
            if resp.status_code == 201:
                user.reports_sent += 1
                if resp.json().get("merged"):
                    user.merged += 1
            else:
                user.errors += 1
        except httpx.RequestError:
            user.errors += 1

        await asyncio.sleep(random.uniform(0.5, 1.5) * interval)


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    center_lat, center_lon = args.center
    sources = []
    for i in range(args.sources):
        lat, lon = offset_point(center_lat, center_lon, args.radius_km)
        sources.append(NoiseSource(
            lat=lat,
            lon=lon,
            category=random.choice(CATEGORIES),
            zip_code=f"{10001 + i % 3:05d}",
        ))

    users = [SimUser(user_id=str(uuid.uuid4()), name=f"sim-user-{i:03d}") for i in range(args.users)]

    print(f"Starting simulation: {args.users} users, {args.reports_per_minute} reports/min each")
    print(f"  Center: {center_lat:.4f}, {center_lon:.4f}")
    print(f"  Noise sources: {args.sources} within {args.radius_km} km")
    print(f"  Report spread: {args.spread_km} km")
    print(f"  Duration: {args.duration}s")
    print(f"  Server: {args.server}")
    print()

    start = time.monotonic()

    async with httpx.AsyncClient(timeout=10.0) as client:
        tasks = [
            run_user(client, user, sources, args.server, args.reports_per_minute,
                     args.duration, args.spread_km)
            for user in users
        ]
        await asyncio.gather(*tasks)

        elapsed = time.monotonic() - start
        total_sent = sum(u.reports_sent for u in users)
        total_merged = sum(u.merged for u in users)
        total_errors = sum(u.errors for u in users)

        print(f"\nSimulation complete in {elapsed:.1f}s")
        print(f"  Total reports sent: {total_sent}")
        print(f"  Merged into existing: {total_merged}")
        print(f"  Total errors: {total_errors}")
        print(f"  Throughput: {total_sent / elapsed:.1f} reports/sec")

        try:
            resp = await client.get(f"{args.server}/api/v1/stats")
        except httpx.RequestError as exc:
            print(f"\nCould not fetch server stats: {exc}")
            return
        if resp.status_code == 200:
            stats = resp.json()
            print("\nServer stats:")
            print(f"  Reports received: {stats['reports_received']}")
            print(f"  Reports created: {stats['reports_created']}")
            print(f"  Reports merged: {stats['reports_merged']}")
            print(f"  Merge conflicts: {stats['merge_conflicts']}")
            print(f"  Active users: {stats['active_users']['total']}")


def main():
    parser = argparse.ArgumentParser(description="NoiseMap report simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--users", type=int, default=10, help="Number of simulated users")
    parser.add_argument("--sources", type=int, default=5, help="Number of noise sources")
    parser.add_argument("--duration", type=int, default=60, help="Simulation duration in seconds")
    parser.add_argument("--reports-per-minute", type=float, default=6, help="Reports per minute per user")
    parser.add_argument("--center", type=str, default="40.7128,-74.0060",
                        help="Center lat,lon (default: New York)")
    parser.add_argument("--radius-km", type=float, default=3.0, help="Noise source scatter radius in km")
    parser.add_argument("--spread-km", type=float, default=0.3,
                        help="How far reports land from their noise source (default: 0.3)")

    args = parser.parse_args()

    lat, lon = args.center.split(",")
    args.center = (float(lat), float(lon))

    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
