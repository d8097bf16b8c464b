#!/usr/bin/env python3
"""Check (and optionally repair) users' ranked lists.

A list is healthy when its positions are exactly 1..N. A save that was
cancelled or expired half way can leave a gap or a duplicate; the API then
answers RANKING_INCONSISTENT for that user. This job finds those lists and,
with REPAIR=1, renumbers them to 1..N keeping the current relative order
(rows sharing a position keep insertion order).

Run (local / Railway):
  cd services/api
  python -m scripts.repair_rankings

Optional env vars:
  USER_IDS="u1,u2"   (default: every user in user_items)
  REPAIR=1           (default: report only)
"""

import asyncio
import os
import sys


# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from playrank.services.errors import InvariantViolation, StoreUnavailable  # noqa: E402
from playrank.services.shift_protocol import compact_positions, verify_order  # noqa: E402
from playrank.stores.ordered import SqlOrderedStore  # noqa: E402
from playrank.stores.postgres import close_db, init_db, ping_db  # noqa: E402
from playrank.stores.redis import close_redis, init_redis  # noqa: E402


def _parse_csv_env(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    return [p.strip() for p in raw.split(",") if p.strip()]


async def main() -> None:
    # Initialize shared connections (same as API lifespan, but for a one-off run)
    await init_db()
    await ping_db()
    try:
        await init_redis()
    except Exception:
        # Without Redis the repair runs without the per-user lock; avoid running it while users rank.
        pass

    try:
        store = SqlOrderedStore()
        repair = os.getenv("REPAIR", "") == "1"
        user_ids = _parse_csv_env("USER_IDS", [])
        if not user_ids:
            user_ids = await store.list_user_ids()

        totals = {"checked": 0, "healthy": 0, "inconsistent": 0, "repaired": 0, "errors": 0}
        broken: list[dict] = []
        for user_id in user_ids:
            totals["checked"] += 1
            try:
                await verify_order(store, user_id)
                totals["healthy"] += 1
                continue
            except InvariantViolation as e:
                totals["inconsistent"] += 1
                broken.append({"user_id": user_id, "positions": (e.detail or {}).get("actual")})
            except StoreUnavailable:
                totals["errors"] += 1
                continue

            if repair:
                try:
                    await compact_positions(store, user_id)
                    totals["repaired"] += 1
                except StoreUnavailable:
                    totals["errors"] += 1

        # Final output for Railway logs (single JSON-ish blob)
        print({"ok": totals["errors"] == 0, "repair": repair, "totals": totals, "inconsistent": broken})
    finally:
        await close_redis()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
