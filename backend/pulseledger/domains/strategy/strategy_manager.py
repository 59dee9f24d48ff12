"""
Strategy manager - the single owner of the live Strategy

Readers call snapshot() and get an immutable value. apply() is the only
mutation path: it is serialized behind a lock, persists the new version
before publishing it, and bumps the version by exactly one.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from pulseledger.common.base import as_utc, utc_now
from pulseledger.common.config import settings
from pulseledger.common.database import DatabaseManager, db_manager
from pulseledger.domains.strategy.models.adaptation_record import AdaptationRecord
from pulseledger.domains.strategy.schemas import (
    AdaptationEntry,
    ParameterChange,
    Strategy,
    StrategyParameters,
)
from pulseledger.domains.strategy.validation import PARAMETER_SPECS, InvalidValue, coerce_value

logger = logging.getLogger(__name__)


def _entry_from_record(record: AdaptationRecord) -> AdaptationEntry:
    changes = tuple(
        ParameterChange(
            name=c.get("name", ""),
            field=c.get("field", ""),
            old_value=c.get("old_value"),
            new_value=c.get("new_value"),
            reason=c.get("reason", ""),
        )
        for c in record.changed_parameters or []
    )
    return AdaptationEntry(
        from_version=record.from_version,
        to_version=record.to_version,
        changes=changes,
        metrics_snapshot=record.metrics_snapshot or {},
        performance_score=record.performance_score,
        created_at=as_utc(record.created_at),
        summary=record.summary or "",
    )


class StrategyManager:

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        defaults: Optional[StrategyParameters] = None,
        history_limit: Optional[int] = None,
    ):
        self.db = db or db_manager
        self.history_limit = history_limit or settings.adaptation_history_limit
        self._lock = asyncio.Lock()
        self._current = Strategy(version=1, parameters=defaults or StrategyParameters.from_settings())

    def snapshot(self) -> Strategy:
        return self._current

    async def restore(self) -> Strategy:
        """Load the newest persisted version (and recent history) if any exists"""
        async with self._lock:
            async with self.db.get_session() as session:
                result = await session.execute(
                    select(AdaptationRecord)
                    .order_by(AdaptationRecord.to_version.desc())
                    .limit(self.history_limit)
                )
                records = list(result.scalars().all())

            if not records:
                logger.info(f"No persisted strategy, using defaults v{self._current.version}")
                return self._current

            latest = records[0]
            params = StrategyParameters.model_validate(
                {**self._current.parameters.model_dump(), **(latest.parameters or {})}
            )
            history = tuple(_entry_from_record(r) for r in reversed(records))
            self._current = Strategy(
                version=latest.to_version,
                parameters=params,
                last_adapted_at=as_utc(latest.created_at),
                history=history,
            )
            logger.info(f"Strategy restored at v{self._current.version}: {params.model_dump()}")
            return self._current

    async def apply(
        self,
        changes: List[ParameterChange],
        metrics_snapshot: Optional[Dict[str, Any]] = None,
        performance_score: Optional[float] = None,
        summary: str = "",
    ) -> Optional[AdaptationEntry]:
        """
        Apply validated changes atomically.

        Changes are re-checked against their domains and against the current
        values (the strategy may have moved since they were validated).
        Returns None, leaving the version untouched, when nothing remains.
        """
        async with self._lock:
            current = self._current
            effective: List[ParameterChange] = []
            updates: Dict[str, Any] = {}
            for change in changes:
                spec = PARAMETER_SPECS.get(change.name)
                if spec is None or spec.field != change.field or change.field in updates:
                    continue
                try:
                    value = coerce_value(spec, change.new_value)
                except InvalidValue:
                    logger.warning(f"Refusing out-of-domain change {change}")
                    continue
                old_value = getattr(current.parameters, spec.field)
                if value == old_value:
                    continue
                updates[spec.field] = value
                effective.append(ParameterChange(change.name, spec.field, old_value, value, change.reason))

            if not effective:
                return None

            new_params = StrategyParameters.model_validate({**current.parameters.model_dump(), **updates})
            now = utc_now()
            entry = AdaptationEntry(
                from_version=current.version,
                to_version=current.version + 1,
                changes=tuple(effective),
                metrics_snapshot=dict(metrics_snapshot or {}),
                performance_score=performance_score,
                created_at=now,
                summary=summary,
            )

            async with self.db.get_session() as session:
                session.add(AdaptationRecord(
                    from_version=entry.from_version,
                    to_version=entry.to_version,
                    changed_parameters=[c.to_dict() for c in entry.changes],
                    parameters=new_params.model_dump(),
                    metrics_snapshot=entry.metrics_snapshot,
                    performance_score=performance_score,
                    summary=summary[:4000] if summary else None,
                    created_at=now,
                    updated_at=now,
                ))

            history = (current.history + (entry,))[-self.history_limit:]
            self._current = Strategy(
                version=entry.to_version,
                parameters=new_params,
                last_adapted_at=now,
                history=history,
            )
            logger.info(
                f"Strategy v{entry.from_version} -> v{entry.to_version}: "
                + ", ".join(f"{c.name} {c.old_value!r}->{c.new_value!r}" for c in effective)
            )
            return entry


_strategy_manager: Optional[StrategyManager] = None


def get_strategy_manager() -> StrategyManager:
    global _strategy_manager
    if _strategy_manager is None:
        _strategy_manager = StrategyManager()
    return _strategy_manager
