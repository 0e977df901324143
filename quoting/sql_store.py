"""
SQLModel-backed QuoteStore.

Every method opens its own session. Folds run in one transaction per key and
lock the row with ``SELECT ... FOR UPDATE`` (a no-op on SQLite). Driver and
SQL errors surface as StoreError.
"""

import json
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlmodel import col, select

from exceptions import StoreError
from models import IntentSiteStatRow, QuoteInteraction, QuoteResult, QuoteRun, SiteCatalog, SitePlan
from quoting.models import (
    InteractionRecord,
    IntentSiteStat,
    RunRecord,
    RunStatus,
    SiteCatalogEntry,
    SiteMatch,
)
from quoting.sites import DEFAULT_SITE_PLANS, KNOWN_SITES
from quoting.store import CatalogMerge, IntentStatMerge, QuoteStore

logger = logging.getLogger(__name__)


def _catalog_entry(row: SiteCatalog) -> SiteCatalogEntry:
    return SiteCatalogEntry.model_validate(row.model_dump())


def _intent_stat(row: IntentSiteStatRow) -> IntentSiteStat:
    return IntentSiteStat.model_validate(row.model_dump())


def _run_record(row: QuoteRun) -> RunRecord:
    try:
        site_plan = json.loads(row.site_plan or "[]")
    except json.JSONDecodeError:
        site_plan = []
    return RunRecord(
        run_id=row.id,
        status=row.status,
        input_type=row.input_type,
        raw_input=row.raw_input,
        category=row.category,
        cluster_key=row.cluster_key,
        duration_ms=row.duration_ms,
        persisted_site_plan=[s for s in site_plan if isinstance(s, str)],
        created_at=row.created_at,
    )


class SqlQuoteStore(QuoteStore):
    def __init__(self, session_maker: sessionmaker):
        self._session_maker = session_maker

    async def get_site_plan(self, category: str) -> Optional[List[str]]:
        try:
            async with self._session_maker() as session:
                row = await session.get(SitePlan, category)
        except SQLAlchemyError as e:
            raise StoreError(f"site plan read failed: {type(e).__name__}", detail={"category": category}) from e
        if row is None:
            return None
        try:
            sites = json.loads(row.sites or "[]")
        except json.JSONDecodeError:
            logger.warning(f"[SqlStore] site plan for {category} is not valid JSON")
            return None
        return [s for s in sites if isinstance(s, str)] if isinstance(sites, list) else None

    async def load_catalog(self, site_ids: Iterable[str]) -> Dict[str, SiteCatalogEntry]:
        wanted = list(site_ids)
        if not wanted:
            return {}
        try:
            async with self._session_maker() as session:
                result = await session.exec(select(SiteCatalog).where(col(SiteCatalog.site_id).in_(wanted)))
                rows = result.all()
        except SQLAlchemyError as e:
            raise StoreError(f"catalog read failed: {type(e).__name__}") from e
        return {row.site_id: _catalog_entry(row) for row in rows}

    async def load_intent_stats(self, cluster_key: str, site_ids: Iterable[str]) -> Dict[str, IntentSiteStat]:
        wanted = list(site_ids)
        if not wanted:
            return {}
        try:
            async with self._session_maker() as session:
                result = await session.exec(
                    select(IntentSiteStatRow)
                    .where(IntentSiteStatRow.cluster_key == cluster_key)
                    .where(col(IntentSiteStatRow.site_id).in_(wanted))
                )
                rows = result.all()
        except SQLAlchemyError as e:
            raise StoreError(f"intent stats read failed: {type(e).__name__}", detail={"cluster_key": cluster_key}) from e
        return {row.site_id: _intent_stat(row) for row in rows}

    async def update_catalog_entry(self, site_id: str, merge: CatalogMerge) -> SiteCatalogEntry:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    result = await session.exec(
                        select(SiteCatalog).where(SiteCatalog.site_id == site_id).with_for_update()
                    )
                    row = result.first()
                    updated = merge(_catalog_entry(row) if row else None)
                    data = updated.model_dump()
                    if row is None:
                        row = SiteCatalog(**data)
                    else:
                        for key, value in data.items():
                            setattr(row, key, value)
                    row.updated_at = datetime.utcnow()
                    session.add(row)
        except SQLAlchemyError as e:
            raise StoreError(f"catalog fold failed: {type(e).__name__}", detail={"site_id": site_id}) from e
        return updated

    async def update_intent_stat(self, cluster_key: str, site_id: str, merge: IntentStatMerge) -> IntentSiteStat:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    result = await session.exec(
                        select(IntentSiteStatRow)
                        .where(IntentSiteStatRow.cluster_key == cluster_key)
                        .where(IntentSiteStatRow.site_id == site_id)
                        .with_for_update()
                    )
                    row = result.first()
                    updated = merge(_intent_stat(row) if row else None)
                    data = updated.model_dump()
                    if row is None:
                        row = IntentSiteStatRow(**data)
                    else:
                        for key, value in data.items():
                            setattr(row, key, value)
                    row.updated_at = datetime.utcnow()
                    session.add(row)
        except SQLAlchemyError as e:
            raise StoreError(
                f"intent stat fold failed: {type(e).__name__}",
                detail={"cluster_key": cluster_key, "site_id": site_id},
            ) from e
        return updated

    async def create_run(self, record: RunRecord) -> None:
        row = QuoteRun(
            id=record.run_id,
            status=record.status,
            input_type=record.input_type,
            raw_input=record.raw_input,
            category=record.category,
            cluster_key=record.cluster_key,
            site_plan=json.dumps(record.persisted_site_plan),
            duration_ms=record.duration_ms,
            created_at=record.created_at,
        )
        await self._add("create_run", row)

    async def finish_run(self, run_id: str, status: RunStatus, duration_ms: Optional[int] = None) -> None:
        try:
            async with self._session_maker() as session:
                row = await session.get(QuoteRun, run_id)
                if row is None:
                    logger.warning(f"[SqlStore] finish_run for unknown run {run_id}")
                    return
                row.status = status
                if duration_ms is not None:
                    row.duration_ms = duration_ms
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"finish_run failed: {type(e).__name__}", detail={"run_id": run_id}) from e

    async def record_match(self, run_id: str, item_index: int, match: SiteMatch) -> None:
        row = QuoteResult(
            run_id=run_id,
            item_index=item_index,
            site=match.site_id,
            title=match.title,
            price=match.price,
            currency=match.currency or "USD",
            url=match.url,
            status=match.status,
            message=match.message,
            latency_ms=match.latency_ms,
        )
        await self._add("record_match", row)

    async def record_interaction(self, interaction: InteractionRecord) -> None:
        row = QuoteInteraction(
            run_id=interaction.run_id,
            action=interaction.action,
            site=interaction.site_id,
            query=interaction.query,
            target_url=interaction.target_url,
            created_at=interaction.created_at,
        )
        await self._add("record_interaction", row)

    async def list_runs(self, limit: int = 20) -> List[RunRecord]:
        try:
            async with self._session_maker() as session:
                result = await session.exec(
                    select(QuoteRun).order_by(col(QuoteRun.created_at).desc()).limit(limit)
                )
                rows = result.all()
        except SQLAlchemyError as e:
            raise StoreError(f"run history read failed: {type(e).__name__}") from e
        return [_run_record(row) for row in rows]

    async def _add(self, operation: str, row) -> None:
        try:
            async with self._session_maker() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"{operation} failed: {type(e).__name__}") from e

    async def seed_defaults(self) -> int:
        """Insert default site plans and catalog rows that do not exist yet. Returns rows added."""
        added = 0
        try:
            async with self._session_maker() as session:
                for category, sites in DEFAULT_SITE_PLANS.items():
                    if await session.get(SitePlan, category) is None:
                        session.add(SitePlan(category=category, sites=json.dumps(sites)))
                        added += 1
                for profile in KNOWN_SITES.values():
                    if await session.get(SiteCatalog, profile.site_id) is None:
                        session.add(SiteCatalog(
                            site_id=profile.site_id,
                            category=profile.category,
                            domain=profile.domain,
                            search_url_template=profile.search_url_template,
                            priority=profile.priority,
                            enabled=profile.enabled,
                        ))
                        added += 1
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"seed failed: {type(e).__name__}") from e
        if added:
            logger.info(f"[SqlStore] seeded {added} default rows")
        return added
