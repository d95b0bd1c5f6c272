# app/services/master_data.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.services.fulfillment_errors import NotFound, ValidationError


@dataclass(frozen=True)
class ItemInfo:
    id: int
    code: str
    name: str
    unit: str
    standard_price: Decimal
    is_active: bool


def _to_info(it: Item) -> ItemInfo:
    return ItemInfo(
        id=int(it.id),
        code=str(it.code),
        name=str(it.name),
        unit=str(it.unit),
        standard_price=Decimal(it.standard_price or 0),
        is_active=bool(it.is_active),
    )


class MasterDataService:
    """
    只负责：商品主数据只读查询（id → code/name/unit/standard_price）。
    不做审计，不做业务，不做主数据增删改。
    """

    async def find_item(self, session: AsyncSession, item_id: int) -> Optional[ItemInfo]:
        it = await session.get(Item, int(item_id))
        return _to_info(it) if it is not None else None

    async def get_item(self, session: AsyncSession, item_id: int, *, require_active: bool = True) -> ItemInfo:
        info = await self.find_item(session, item_id)
        if info is None:
            raise NotFound(f"商品不存在：item_id={item_id}", context={"item_id": int(item_id)})
        if require_active and not info.is_active:
            raise ValidationError(f"商品已停用：item_id={item_id}", context={"item_id": int(item_id)})
        return info

    async def get_items(self, session: AsyncSession, item_ids: Iterable[int]) -> Dict[int, ItemInfo]:
        ids = sorted({int(i) for i in item_ids})
        if not ids:
            return {}
        rows = (await session.execute(select(Item).where(Item.id.in_(ids)))).scalars().all()
        return {int(r.id): _to_info(r) for r in rows}
