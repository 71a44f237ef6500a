# scripts/smoke_match.py
"""
Live check against GHL: match one property against every buyer and print the tiers.

  python scripts/smoke_match.py <property record id>
"""
from __future__ import annotations

import asyncio
import logging
import sys

from dealflow.adapters.clients.ghl import GHLClient
from dealflow.adapters.clients.mapbox import MapboxGeocoder
from dealflow.db import async_session, init_models
from dealflow.service_layer.matching import buyers_for_property


def _quiet_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def main(record_id: str) -> None:
    _quiet_logging()
    await init_models()

    async with async_session() as session:
        run = await buyers_for_property(session, GHLClient(), MapboxGeocoder(), record_id)
        await session.commit()

    res = run.result
    print(f"{run.target.address}: {res.total_count} buyers scored in {res.time_ms:.1f}ms")
    for tier, items in (("INTERESTED", res.interested), ("POTENTIAL", res.potential)):
        print(f"-- {tier} ({len(items)})")
        for sb in items:
            s = sb.score
            flag = "*" if s.is_priority else " "
            print(f"{flag} {s.score:3d}  {sb.buyer.name or sb.buyer.contact_id:<30}  {s.location_reason}")
    print(f"dropped={res.dropped} parse_drops={dict(run.buyers_report.drop_reasons)} geocode={run.geocode.snapshot()}")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)
    asyncio.run(main(sys.argv[1]))
