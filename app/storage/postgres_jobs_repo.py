"""Postgres-backed repository for content jobs using SQLAlchemy."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, func, select, update

from app.core.database import require_session_factory
from app.jobs.models import JobEventRecord, JobRecord, JobStatus
from app.schema.jobs import Job, JobEvent
from app.storage.jobs_repo import JobsRepository


def _now() -> datetime:
  return datetime.now(UTC)


class PostgresJobsRepository(JobsRepository):
  """Persist jobs and their events to Postgres."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Job, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def transition_job(
    self,
    job_id: str,
    *,
    from_statuses: Iterable[str],
    status: JobStatus,
    progress: int | None = None,
    result_json: dict[str, Any] | None = None,
    error_text: str | None = None,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
  ) -> JobRecord | None:
    values: dict[str, Any] = {"status": status, "updated_at": _now()}
    if progress is not None:
      values["progress"] = int(progress)
    if result_json is not None:
      values["result_json"] = result_json
    if error_text is not None:
      values["error_text"] = error_text
    if started_at is not None:
      values["started_at"] = started_at
    if finished_at is not None:
      values["finished_at"] = finished_at
    async with self._session_factory() as session:
      stmt = update(Job).where(Job.job_id == job_id, Job.status.in_(tuple(from_statuses))).values(**values).returning(Job)
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      if row is None:
        return None
      return self._model_to_record(row)

  async def reset_for_retry(self, job_id: str, *, from_statuses: Iterable[str]) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = (
        update(Job)
        .where(Job.job_id == job_id, Job.status.in_(tuple(from_statuses)))
        .values(status="queued", progress=0, result_json=None, error_text=None, aej_final=None, started_at=None, finished_at=None, updated_at=_now())
        .returning(Job)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      if row is None:
        return None
      return self._model_to_record(row)

  async def update_progress(self, job_id: str, progress: int) -> None:
    async with self._session_factory() as session:
      await session.execute(update(Job).where(Job.job_id == job_id, Job.status == "running").values(progress=int(progress), updated_at=_now()))
      await session.commit()

  async def set_final_cost(self, job_id: str, aej_final: int) -> None:
    async with self._session_factory() as session:
      await session.execute(update(Job).where(Job.job_id == job_id).values(aej_final=int(aej_final), updated_at=_now()))
      await session.commit()

  async def list_jobs(self, *, limit: int = 50, offset: int = 0, status: str | None = None, tenant_id: str | None = None, mode: str | None = None) -> tuple[list[JobRecord], int]:
    async with self._session_factory() as session:
      stmt = select(Job).order_by(Job.created_at.desc()).limit(limit).offset(offset)
      count_stmt = select(func.count()).select_from(Job)
      filters = []
      if status:
        filters.append(Job.status == status)
      if tenant_id:
        filters.append(Job.tenant_id == tenant_id)
      if mode:
        filters.append(Job.mode == mode)
      if filters:
        stmt = stmt.where(and_(*filters))
        count_stmt = count_stmt.where(and_(*filters))
      total = await session.scalar(count_stmt)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows], int(total or 0)

  async def count_jobs(self, *, status: str) -> int:
    async with self._session_factory() as session:
      total = await session.scalar(select(func.count()).select_from(Job).where(Job.status == status))
      return int(total or 0)

  async def append_event(self, *, job_id: str, tenant_id: str | None, event_type: str, message: str | None = None, meta: dict[str, Any] | None = None) -> None:
    async with self._session_factory() as session:
      session.add(JobEvent(job_id=job_id, tenant_id=tenant_id, event_type=event_type, message=message, meta_json=meta))
      await session.commit()

  async def list_events(self, *, job_id: str, limit: int = 200) -> list[JobEventRecord]:
    async with self._session_factory() as session:
      stmt = select(JobEvent).where(JobEvent.job_id == job_id).order_by(JobEvent.created_at.asc(), JobEvent.id.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [
        JobEventRecord(id=int(row.id), job_id=row.job_id, tenant_id=row.tenant_id, event_type=row.event_type, message=row.message, meta=row.meta_json, created_at=row.created_at)
        for row in rows
      ]

  def _model_to_record(self, row: Job) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      tenant_id=row.tenant_id,
      mode=row.mode,
      status=row.status,  # type: ignore[arg-type]
      request=row.request_json or {},
      aej_estimated=int(row.aej_estimated),
      progress=int(row.progress or 0),
      result_json=row.result_json,
      aej_final=int(row.aej_final) if row.aej_final is not None else None,
      error_text=row.error_text,
      idempotency_key=row.idempotency_key,
      created_at=row.created_at,
      updated_at=row.updated_at,
      started_at=row.started_at,
      finished_at=row.finished_at,
    )
