"""Domain exceptions shared by services, workers and HTTP handlers."""

from __future__ import annotations

from typing import Any


class ContentEngineError(RuntimeError):
  """Base class for errors that carry a stable machine-readable code."""

  code = "internal_error"

  def __init__(self, message: str | None = None) -> None:
    super().__init__(message or self.code)

  def to_payload(self) -> dict[str, Any]:
    return {"ok": False, "error": self.code}


class RequestValidationFailed(ContentEngineError):
  """Raised when a request shape is rejected before persistence."""

  code = "schema_invalid"

  def __init__(self, details: list[str]) -> None:
    super().__init__("; ".join(details) or self.code)
    self.details = details

  def to_payload(self) -> dict[str, Any]:
    return {"ok": False, "error": self.code, "details": list(self.details)}


class JobNotFoundError(ContentEngineError):
  """Raised when a job is unknown or belongs to another tenant."""

  code = "job_not_found"

  def __init__(self, job_id: str) -> None:
    super().__init__(f"job_not_found:{job_id}")
    self.job_id = job_id


class JobStateConflictError(ContentEngineError):
  """Raised when an operation is not valid for the job's current status."""

  code = "job_conflict"

  def __init__(self, job_id: str, status: str, message: str) -> None:
    super().__init__(message)
    self.job_id = job_id
    self.status = status

  def to_payload(self) -> dict[str, Any]:
    return {"ok": False, "error": self.code, "job_id": self.job_id, "status": self.status, "message": str(self)}


class DispatchError(ContentEngineError):
  """Raised by enqueuers when a job cannot be handed to the dispatch queue."""

  code = "dispatch_failed"
