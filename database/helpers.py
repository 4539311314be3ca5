"""
Database helper functions — persist and read imported metric values.

This is the boundary to the record-keeping application: plugins hand
over normalized daily values and the app reads them per user and date.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import MetricValue
from plugins.schemas import ImportedRecord

logger = logging.getLogger(__name__)


async def upsert_metric_values(
    session: AsyncSession,
    user_id: str,
    plugin_id: str,
    records: Iterable[ImportedRecord],
) -> int:
    """
    Insert or update one ``MetricValue`` per record.

    Keyed by (user, plugin, date, field); re-importing a day overwrites
    the stored value, and a later duplicate in ``records`` wins.  Returns the
    number of distinct rows written.
    """
    records = list(records)
    if not records:
        return 0

    dates = sorted({r.date for r in records})
    result = await session.execute(
        select(MetricValue).where(
            MetricValue.user_id == user_id,
            MetricValue.plugin_id == plugin_id,
            MetricValue.date.in_(dates),
        )
    )
    existing: Dict[Tuple[str, str], MetricValue] = {
        (row.date, row.field_id): row for row in result.scalars().all()
    }

    now = datetime.now(timezone.utc)
    written = set()
    for record in records:
        row = existing.get((record.date, record.field_id))
        if row is None:
            row = MetricValue(
                user_id=user_id,
                plugin_id=plugin_id,
                date=record.date,
                field_id=record.field_id,
                value=record.value,
                imported_at=now,
            )
            session.add(row)
            existing[(record.date, record.field_id)] = row
        else:
            row.value = record.value
            row.imported_at = now
        written.add((record.date, record.field_id))

    await session.flush()
    logger.debug("Upserted %d %s values for user %s", len(written), plugin_id, user_id)
    return len(written)


async def get_metric_values(
    session: AsyncSession,
    user_id: str,
    start_date: str,
    end_date: str,
) -> List[MetricValue]:
    """Values for a user in ``[start_date, end_date]``, oldest first."""
    result = await session.execute(
        select(MetricValue)
        .where(
            MetricValue.user_id == user_id,
            MetricValue.date >= start_date,
            MetricValue.date <= end_date,
        )
        .order_by(MetricValue.date, MetricValue.field_id)
    )
    return list(result.scalars().all())
