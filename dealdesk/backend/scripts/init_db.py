# scripts/init_db.py
from __future__ import annotations

import argparse
import asyncio

from dealflow.db import async_session, init_models
from dealflow.service_layer.geocoding import clear_geocache, geocache_stats


async def main(clear: bool) -> None:
    await init_models()
    print("OK: created all tables (idempotent).")

    async with async_session() as session:
        if clear:
            n = await clear_geocache(session)
            await session.commit()
            print(f"OK: cleared {n} geocache entries.")
        print(f"geocache: {await geocache_stats(session)}")


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Create local DealDesk tables")
    ap.add_argument("--clear-geocache", action="store_true", help="drop every cached geocode (positive and negative)")
    args = ap.parse_args()
    asyncio.run(main(args.clear_geocache))
