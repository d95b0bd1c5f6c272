# scripts/recompute_capacity.py
"""
库位容量体检 / 修复：current_capacity vs 库存记录 quantity 之和

Usage:
  PYTHONPATH=. python scripts/recompute_capacity.py --dry-run
  PYTHONPATH=. python scripts/recompute_capacity.py --location-id 12
  PYTHONPATH=. python scripts/recompute_capacity.py            # 全量修复

退出码：--dry-run 且发现漂移时为 1（可挂 CI / 定时任务告警），其它情况 0。
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional

from app.core.config import get_settings
from app.core.logging import setup_logging
from app.core.tx import run_tx
from app.db.session import close_engines, get_sessionmaker
from app.services.location_capacity import CapacityDrift, LocationCapacityService


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="库位容量漂移体检（默认修复，--dry-run 只报告）")
    p.add_argument("--location-id", dest="location_id", type=int, default=None, help="只处理某个库位")
    p.add_argument("--dry-run", action="store_true", help="只报告漂移，回滚不落库")
    return p.parse_args()


async def _check_all(dry_run: bool) -> List[CapacityDrift]:
    svc = LocationCapacityService()
    async with get_sessionmaker()() as session:
        if dry_run:
            drifts = await svc.recompute_all(session)
            await session.rollback()
            return drifts
        return await run_tx(session, svc.recompute_all)


async def _check_one(location_id: int, dry_run: bool) -> Optional[int]:
    svc = LocationCapacityService()
    async with get_sessionmaker()() as session:
        if dry_run:
            actual = await svc.recompute(session, location_id)
            await session.rollback()
            return actual
        return await run_tx(session, lambda s: svc.recompute(s, location_id))


async def main() -> int:
    args = _parse_args()
    s = get_settings()
    setup_logging(s.LOG_LEVEL, json=s.JSON_LOG)

    try:
        if args.location_id is not None:
            actual = await _check_one(args.location_id, args.dry_run)
            print(f"location_id={args.location_id} actual_capacity={actual}")
            return 0

        drifts = await _check_all(args.dry_run)
        if not drifts:
            print("OK: no capacity drift")
            return 0

        print(f"{'DRIFT' if args.dry_run else 'FIXED'}: {len(drifts)} location(s)")
        for d in drifts:
            print(f"  {d.code:<16} id={d.location_id:<6} stored={d.stored_capacity:<6} actual={d.actual_capacity:<6} drift={d.drift:+d}")
        return 1 if args.dry_run else 0
    finally:
        await close_engines()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
