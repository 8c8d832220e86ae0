"""
State reconciler

Brings a persisted printer snapshot up to date with wall-clock time. Nothing
runs in the background: every effect that should have happened since the
snapshot was written (warm-up, page-by-page resource draw, job completion,
queue advancement, fault injection) is replayed here from absolute
timestamps, on a copy of the snapshot.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Optional

from config import Config
from jobs import complete_job, fail_job, finish_time, job_progress, page_start, pages_started, start_job
from resources import apply_delta, consume
from schemas import (
    ErrorSeverity, ErrorType, FailureReason, JobStatus, LogEntry,
    PrinterError, PrinterInstance, PrinterStatus, PrintJob,
)

logger = logging.getLogger("printer_simulation")

FAULT_TYPES = [FailureReason.PAPER_JAM, FailureReason.HARDWARE_ERROR]

FAILURE_ERRORS = {
    FailureReason.INK_DEPLETED: (ErrorType.INK_DEPLETED, ErrorSeverity.ERROR),
    FailureReason.OUT_OF_PAPER: (ErrorType.OUT_OF_PAPER, ErrorSeverity.ERROR),
    FailureReason.PAPER_JAM: (ErrorType.PAPER_JAM, ErrorSeverity.ERROR),
    FailureReason.HARDWARE_ERROR: (ErrorType.HARDWARE_ERROR, ErrorSeverity.CRITICAL),
}

BLOCKING_SEVERITIES = (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)

# ==================== Snapshot Helpers ====================

def set_status(state: PrinterInstance, status: PrinterStatus, at: datetime):
    if state.status != status:
        state.status = status
        state.status_since = at


def add_log(state: PrinterInstance, at: datetime, message: str, level: str = "info",
            config=Config):
    state.logs.append(LogEntry(timestamp=at, level=level, message=message))
    if len(state.logs) > config.MAX_LOGS:
        del state.logs[:len(state.logs) - config.MAX_LOGS]


def add_error(state: PrinterInstance, error_type: ErrorType, message: str, at: datetime,
              severity: ErrorSeverity = ErrorSeverity.ERROR, color: Optional[str] = None,
              config=Config):
    """Record an unresolved error; an identical unresolved entry is not duplicated"""
    for existing in state.errors:
        if existing.type == error_type and existing.color == color:
            return
    state.errors.append(PrinterError(
        type=error_type, message=message, timestamp=at, severity=severity, color=color,
    ))
    while len(state.errors) > config.MAX_ERRORS:
        warnings = [e for e in state.errors if e.severity == ErrorSeverity.WARNING]
        state.errors.remove(warnings[0] if warnings else state.errors[0])


def resolve_errors(state: PrinterInstance, *error_types: ErrorType, color: Optional[str] = None) -> int:
    """Drop resolved error entries; returns how many were cleared"""
    before = len(state.errors)
    state.errors = [
        e for e in state.errors
        if not (e.type in error_types and (color is None or e.color is None or e.color == color))
    ]
    return before - len(state.errors)


def has_blocking_errors(state: PrinterInstance) -> bool:
    return any(e.severity in BLOCKING_SEVERITIES for e in state.errors)


def recover_if_clear(state: PrinterInstance, now: datetime, config=Config) -> bool:
    """Return an errored printer to ready once no blocking error remains"""
    if state.status == PrinterStatus.ERROR and not has_blocking_errors(state):
        set_status(state, PrinterStatus.READY, now)
        state.idle_since = now
        add_log(state, now, "Printer ready", config=config)
        return True
    return False


def archive_job(state: PrinterInstance, job: PrintJob, config=Config):
    state.completed_jobs.append(job)
    if len(state.completed_jobs) > config.MAX_COMPLETED_JOBS:
        del state.completed_jobs[:len(state.completed_jobs) - config.MAX_COMPLETED_JOBS]


def fail_current_job(state: PrinterInstance, at: datetime, reason: FailureReason,
                     message: str = None, config=Config):
    """Fail the active job, record the fault and stop the printer"""
    job = state.current_job
    fail_job(job, at, reason)
    state.statistics.failed_jobs += 1
    archive_job(state, job, config)
    state.current_job = None
    state.idle_since = at

    if reason in FAILURE_ERRORS:
        error_type, severity = FAILURE_ERRORS[reason]
        add_error(state, error_type, message or reason.value.replace("_", " ").capitalize(),
                  at, severity=severity, config=config)
        set_status(state, PrinterStatus.ERROR, at)
    add_log(state, at, f"Job {job.document_name} failed: {reason.value}", level="error", config=config)
    logger.debug(f"[{state.id}] Job {job.id} failed at {at.isoformat()}: {reason.value}")

# ==================== Reconciliation Steps ====================

def _normalize(state: PrinterInstance):
    """Repair legacy layouts where the active job was also kept in the queue"""
    if state.current_job is not None:
        state.queue = [j for j in state.queue if j.id != state.current_job.id]
    elif state.status == PrinterStatus.PRINTING:
        state.status = PrinterStatus.READY


def _finish_warmup(state: PrinterInstance, now: datetime, config):
    if state.status != PrinterStatus.WARMING_UP:
        return
    ready_at = state.status_since + timedelta(seconds=config.WARMUP_SECONDS)
    if now >= ready_at:
        set_status(state, PrinterStatus.READY, ready_at)
        if state.idle_since is None or state.idle_since < ready_at:
            state.idle_since = ready_at
        add_log(state, ready_at, "Printer ready", config=config)


def _roll_fault(state: PrinterInstance, rng) -> Optional[FailureReason]:
    settings = state.settings
    if not settings.enable_error_simulation or settings.error_probability <= 0:
        return None
    if rng.random() < settings.error_probability:
        return rng.choice(FAULT_TYPES)
    return None


def _start_next(state: PrinterInstance, rng, config) -> PrintJob:
    job = state.queue.pop(0)
    start_at = job.submitted_at
    if state.idle_since is not None and state.idle_since > start_at:
        start_at = state.idle_since

    start_job(job, start_at)
    state.current_job = job
    set_status(state, PrinterStatus.PRINTING, start_at)
    add_log(state, start_at, f"Starting print job: {job.document_name}", config=config)

    fault = _roll_fault(state, rng)
    if fault is not None:
        message = "Paper jam detected" if fault == FailureReason.PAPER_JAM else "Hardware error detected"
        fail_current_job(state, start_at, fault, message=message, config=config)
    return job


def _warn_low_ink(state: PrinterInstance, before: dict, at: datetime, config):
    for channel, level in state.ink_levels.items():
        if 0 < level <= config.LOW_INK_THRESHOLD < before.get(channel, 0.0):
            add_error(state, ErrorType.LOW_INK, f"Low {channel} ink ({round(level)}%)", at,
                      severity=ErrorSeverity.WARNING, color=channel, config=config)


def _advance_job(state: PrinterInstance, job: PrintJob, now: datetime, config) -> bool:
    """Advance the printing job to `now`; True when it reached a terminal state"""
    due = pages_started(job, now)
    if job.pages_printed < due:
        delta = consume(job, state)
        while job.pages_printed < due:
            at = page_start(job, job.pages_printed + 1)
            before = dict(state.ink_levels)
            failure = apply_delta(state, delta)
            _warn_low_ink(state, before, at, config)
            if failure is not None:
                message = None
                if failure == FailureReason.INK_DEPLETED:
                    empty = [c for c in delta.ink if state.ink_levels.get(c, 0.0) <= 0]
                    message = f"Ink depleted: {', '.join(empty)}"
                else:
                    message = "Out of paper"
                fail_current_job(state, at, failure, message=message, config=config)
                return True
            job.pages_printed += 1
            state.statistics.total_pages_printed += 1

    finished_at = finish_time(job)
    if now >= finished_at:
        complete_job(job, finished_at)
        state.statistics.successful_jobs += 1
        archive_job(state, job, config)
        state.current_job = None
        state.idle_since = finished_at
        set_status(state, PrinterStatus.READY, finished_at)
        add_log(state, finished_at, f"Completed print job: {job.document_name}", config=config)
        return True

    job.progress = max(job.progress, job_progress(job, now))
    return False


def reconcile(snapshot: PrinterInstance, now: datetime, rng=None, config=Config) -> PrinterInstance:
    """
    Return a copy of `snapshot` with every effect due by `now` applied.

    Pure: the input is never mutated and nothing is persisted. Calling it
    again with the same `now` changes nothing, because all progress is
    derived from timestamps stored on the snapshot. At most
    config.MAX_JOBS_PER_RECONCILE jobs are finalised per call; a very stale
    snapshot catches up over successive calls.
    """
    rng = rng or random
    state = snapshot.model_copy(deep=True)
    _normalize(state)
    _finish_warmup(state, now, config)

    finalized = 0
    while finalized < config.MAX_JOBS_PER_RECONCILE:
        job = state.current_job
        if job is None:
            if state.status != PrinterStatus.READY or not state.queue:
                break
            job = _start_next(state, rng, config)
            if job.status == JobStatus.FAILED:
                finalized += 1
                continue

        if state.status != PrinterStatus.PRINTING:
            break
        if not _advance_job(state, job, now, config):
            break
        finalized += 1

    return state
