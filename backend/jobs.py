"""
Print job lifecycle: queued -> printing -> completed | failed | cancelled

Progress is always derived from absolute timestamps stored on the job, so
recomputing it any number of times for the same instant gives the same value.
"""

import math
import uuid
from datetime import datetime, timedelta

from config import Config
from errors import OperationNotAllowedError
from printer_types import get_printer_type
from schemas import (
    TERMINAL_JOB_STATES, FailureReason, JobStatus, PrinterInstance,
    PrintJob, PrintQuality, PrintRequest,
)

# Print time multipliers relative to normal quality
QUALITY_TIME_MULTIPLIER = {
    PrintQuality.DRAFT: 0.7,
    PrintQuality.NORMAL: 1.0,
    PrintQuality.HIGH: 1.5,
    PrintQuality.PHOTO: 2.5,
}


def new_job_id() -> str:
    return f"job-{uuid.uuid4().hex[:12]}"


def estimated_time_seconds(pages: int, quality: PrintQuality,
                           ppm: float = Config.DEFAULT_PPM,
                           speed_multiplier: float = 1.0) -> int:
    """Whole seconds needed to print `pages` at the given speed and quality"""
    base_time = pages * (60 / ppm)
    return max(1, math.ceil(base_time * QUALITY_TIME_MULTIPLIER[quality] / speed_multiplier))


def printer_ppm(instance: PrinterInstance, color: bool) -> float:
    ptype = get_printer_type(instance.type_id)
    if ptype is None:
        return Config.DEFAULT_PPM
    if color and ptype.color_support and ptype.ppm_color:
        return ptype.ppm_color
    return ptype.ppm_mono


def create_job(request: PrintRequest, instance: PrinterInstance, now: datetime) -> PrintJob:
    quality = request.quality or instance.settings.default_quality
    paper_size = request.paper_size or instance.settings.default_paper_size
    return PrintJob(
        id=new_job_id(),
        document_name=request.document_name,
        pages=request.pages,
        color=request.color,
        quality=quality,
        paper_size=paper_size,
        status=JobStatus.QUEUED,
        progress=0.0,
        submitted_at=now,
        estimated_time_seconds=estimated_time_seconds(
            request.pages, quality,
            printer_ppm(instance, request.color),
            instance.settings.print_speed_multiplier,
        ),
    )

# ==================== Timing ====================

def elapsed_seconds(job: PrintJob, now: datetime) -> float:
    if job.started_at is None:
        return 0.0
    return max(0.0, (now - job.started_at).total_seconds())


def job_progress(job: PrintJob, now: datetime) -> float:
    """Progress percentage of a printing job at `now`; frozen otherwise"""
    if job.status != JobStatus.PRINTING:
        return job.progress
    elapsed = elapsed_seconds(job, now)
    return min(100.0, elapsed / job.estimated_time_seconds * 100)


def pages_started(job: PrintJob, now: datetime) -> int:
    """Number of pages fed into the printer by `now` (a page draws its resources when it starts)"""
    if job.started_at is None:
        return 0
    elapsed = elapsed_seconds(job, now)
    if elapsed >= job.estimated_time_seconds:
        return job.pages
    return min(job.pages, math.floor(elapsed * job.pages / job.estimated_time_seconds) + 1)


def page_start(job: PrintJob, page: int) -> datetime:
    """Instant at which 1-based `page` starts printing"""
    return job.started_at + timedelta(seconds=job.estimated_time_seconds * (page - 1) / job.pages)


def finish_time(job: PrintJob) -> datetime:
    return job.started_at + timedelta(seconds=job.estimated_time_seconds)

# ==================== Transitions ====================

def start_job(job: PrintJob, at: datetime) -> PrintJob:
    if job.status != JobStatus.QUEUED:
        raise OperationNotAllowedError(f"Cannot start job {job.id} in state {job.status.value}")
    job.status = JobStatus.PRINTING
    job.started_at = at
    job.progress = 0.0
    return job


def complete_job(job: PrintJob, at: datetime) -> PrintJob:
    if job.status != JobStatus.PRINTING:
        raise OperationNotAllowedError(f"Cannot complete job {job.id} in state {job.status.value}")
    job.status = JobStatus.COMPLETED
    job.progress = 100.0
    job.pages_printed = job.pages
    job.completed_at = at
    return job


def fail_job(job: PrintJob, at: datetime, reason: FailureReason) -> PrintJob:
    if job.status in TERMINAL_JOB_STATES:
        raise OperationNotAllowedError(f"Cannot fail job {job.id} in state {job.status.value}")
    job.status = JobStatus.FAILED
    job.failure_reason = reason
    job.progress = job.pages_printed / job.pages * 100
    job.completed_at = at
    return job


def cancel_job(job: PrintJob, at: datetime) -> PrintJob:
    if job.status in TERMINAL_JOB_STATES:
        raise OperationNotAllowedError(f"Cannot cancel job {job.id}: already {job.status.value}")
    job.status = JobStatus.CANCELLED
    job.completed_at = at
    return job
