"""Schema package exports."""

from .jobs import DecisionRecord, Job, JobEvent
from .ledger import HoldStatus, IdempotencyRecord, LedgerStage, QuotaHold, UsageLedgerEntry
from .runtime import AdminFlag, DispatchQueueEntry
from .tenants import Tenant

__all__ = ["AdminFlag", "DecisionRecord", "DispatchQueueEntry", "HoldStatus", "IdempotencyRecord", "Job", "JobEvent", "LedgerStage", "QuotaHold", "Tenant", "UsageLedgerEntry"]
