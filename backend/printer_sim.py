"""
Printer simulation service

Every operation follows the same request/response cycle:
    load snapshot -> reconcile to now -> apply transition -> save (versioned) -> project
No simulation state is kept between calls; the storage adapter is the only
source of truth.
"""

import random
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from config import Config
from errors import (
    CorruptSnapshotError, JobNotFoundError, OperationNotAllowedError,
    PrinterNotFoundError, ValidationError,
)
from fleet import FleetRegistry, create_printer_instance, with_retries
from jobs import cancel_job as cancel_job_transition
from jobs import create_job, job_progress
from log_config import setup_logger
from printer_types import capabilities_for, get_printer_type
from reconciler import (
    add_log, archive_job, fail_current_job, reconcile, recover_if_clear,
    resolve_errors, set_status,
)
from resources import depleted_colors, low_colors
from schemas import (
    AlignHeadsRequest, CancelJobRequest, CleanHeadsRequest, ClearJamRequest,
    ErrorType, FactoryResetRequest, FailureReason, InkColor, LoadPaperRequest,
    NozzleCheckRequest, PauseRequest, PowerCycleRequest, PrinterInstance,
    PrinterStatus, PrintJob, PrintRequest, RefillInkRequest, ResumeRequest,
    SetInkRequest, SetPaperRequest, utcnow,
)
from storage import StorageAdapter, printer_key

logger = setup_logger("printer_simulation", "printer_simulation.log")

CLEANING_INK_COST = 2.0
ALIGNMENT_INK_COST = 1.0


class PrinterService:
    """Operation surface over persisted printer snapshots"""

    def __init__(self, storage: StorageAdapter, config=Config,
                 clock: Callable[[], datetime] = utcnow, rng=None):
        self.storage = storage
        self.config = config
        self.clock = clock
        self.rng = rng or random.Random()
        self.registry = FleetRegistry(storage, config, clock)

    # ==================== Transaction Helpers ====================

    def reconcile(self, snapshot: PrinterInstance, now: datetime, rng=None) -> PrinterInstance:
        return reconcile(snapshot, now, rng=rng or self.rng, config=self.config)

    def _transact(self, printer_id: str, operation: Callable, description: str):
        """
        Run one state transition against a freshly reconciled snapshot

        Args:
            printer_id: Target instance
            operation: Called as operation(state, now); mutates state in place
            description: Used for conflict logging

        Returns:
            (operation result, saved snapshot)
        """
        now = self.clock()

        def attempt():
            snapshot = self.registry.load_printer(printer_id)
            expected = snapshot.version
            state = self.reconcile(snapshot, now)
            result = operation(state, now)
            # Start whatever the transition unblocked (a freshly queued job, a cleared jam)
            state = self.reconcile(state, now)
            state.version = expected + 1
            state.last_updated = now
            self.registry.save_printer(state, expected_version=expected)
            return result, state

        return with_retries(attempt, f"{printer_key(printer_id)} {description}", self.config)

    def _observe(self, printer_id: str) -> Tuple[PrinterInstance, datetime]:
        """Reconciled view for read operations; persisted only when something changed"""
        now = self.clock()

        def attempt():
            snapshot = self.registry.load_printer(printer_id)
            state = self.reconcile(snapshot, now)
            if state != snapshot:
                expected = snapshot.version
                state.version = expected + 1
                state.last_updated = now
                self.registry.save_printer(state, expected_version=expected)
            return state

        return with_retries(attempt, f"{printer_key(printer_id)} read", self.config), now

    @staticmethod
    def _require_idle(state: PrinterInstance, operation: str):
        if state.status == PrinterStatus.PRINTING or state.current_job is not None:
            raise OperationNotAllowedError(f"Cannot run {operation} while printing")

    @staticmethod
    def _require_channel(state: PrinterInstance, color: InkColor) -> str:
        channel = color.value if isinstance(color, InkColor) else str(color)
        if channel not in state.ink_levels:
            raise ValidationError(f"Printer {state.id} has no {channel} ink channel")
        return channel

    def _result(self, state: PrinterInstance, message: str, **extra) -> Dict:
        payload = {
            "success": True,
            "message": message,
            "printer_id": state.id,
            "status": state.status.value,
        }
        payload.update(extra)
        return payload

    # ==================== Jobs ====================

    def submit_print_job(self, printer_id: str, request: PrintRequest) -> Dict:
        def submit(state: PrinterInstance, now: datetime):
            ptype = get_printer_type(state.type_id)
            if request.paper_size and ptype and request.paper_size not in ptype.supported_paper_sizes:
                raise ValidationError(
                    f"{ptype.model} does not support {request.paper_size.value} paper"
                )
            job = create_job(request, state, now)
            state.queue.append(job)
            state.statistics.total_jobs += 1
            add_log(state, now, f"Print job queued: {job.document_name}", config=self.config)
            if state.status in (PrinterStatus.OFFLINE, PrinterStatus.SLEEP) and state.settings.auto_wakeup:
                set_status(state, PrinterStatus.WARMING_UP, now)
                state.last_start_time = now
                add_log(state, now, "Printer waking up, warming up", config=self.config)
            return job

        job, state = self._transact(printer_id, submit, "submit")
        logger.info(f"🖨️ [{printer_id}] Queued {job.id} ({job.pages} pages, {job.quality.value})")
        return self._result(
            state, "Print job queued successfully",
            job_id=job.id,
            estimated_time_seconds=job.estimated_time_seconds,
            queue_position=self._queue_position(state, job.id),
        )

    @staticmethod
    def _queue_position(state: PrinterInstance, job_id: str) -> int:
        """0 for the active job, 1.. for queued jobs, -1 when already finished"""
        if state.current_job is not None and state.current_job.id == job_id:
            return 0
        for index, job in enumerate(state.queue, start=1):
            if job.id == job_id:
                return index
        return -1

    def cancel_job(self, printer_id: str, job_id: str) -> Dict:
        def cancel(state: PrinterInstance, now: datetime):
            if state.current_job is not None and state.current_job.id == job_id:
                job = cancel_job_transition(state.current_job, now)
                state.current_job = None
                state.paused_at = None
                state.idle_since = now
                if state.status in (PrinterStatus.PRINTING, PrinterStatus.PAUSED):
                    set_status(state, PrinterStatus.READY, now)
            else:
                job = next((j for j in state.queue if j.id == job_id), None)
                if job is None:
                    if any(j.id == job_id for j in state.completed_jobs):
                        raise OperationNotAllowedError(f"Job {job_id} has already finished")
                    raise JobNotFoundError(job_id)
                cancel_job_transition(job, now)
                state.queue.remove(job)

            state.statistics.cancelled_jobs += 1
            archive_job(state, job, self.config)
            add_log(state, now, f"Cancelled job: {job.document_name}", config=self.config)
            return job

        job, state = self._transact(printer_id, cancel, "cancel")
        logger.info(f"[{printer_id}] Cancelled {job_id}")
        return self._result(state, f"Job {job_id} cancelled", job_id=job_id,
                            progress=round(job.progress, 1))

    def get_queue(self, printer_id: str) -> Dict:
        state, now = self._observe(printer_id)
        return {
            "printer_id": printer_id,
            "current_job": self._project_job(state.current_job, now) if state.current_job else None,
            "queued": [self._project_job(job, now) for job in state.queue],
            "recent": [self._project_job(job, now) for job in state.completed_jobs[-10:]],
        }

    # ==================== Pause / Resume ====================

    def pause(self, printer_id: str) -> Dict:
        def pause(state: PrinterInstance, now: datetime):
            if state.status not in (PrinterStatus.PRINTING, PrinterStatus.READY):
                raise OperationNotAllowedError(
                    f"Cannot pause - printer is {state.status.value}"
                )
            set_status(state, PrinterStatus.PAUSED, now)
            state.paused_at = now
            add_log(state, now, "Printer paused", config=self.config)

        _, state = self._transact(printer_id, pause, "pause")
        return self._result(state, "Printer paused")

    def resume(self, printer_id: str) -> Dict:
        def resume(state: PrinterInstance, now: datetime):
            if state.status != PrinterStatus.PAUSED:
                raise OperationNotAllowedError(
                    f"Cannot resume - printer is {state.status.value}"
                )
            paused_for = now - (state.paused_at or now)
            state.paused_at = None
            job = state.current_job
            if job is not None:
                # Time spent paused does not count towards the job
                job.started_at = job.started_at + paused_for
                set_status(state, PrinterStatus.PRINTING, now)
            else:
                set_status(state, PrinterStatus.READY, now)
                state.idle_since = now
            add_log(state, now, "Printer resumed", config=self.config)

        _, state = self._transact(printer_id, resume, "resume")
        return self._result(state, "Printer resumed")

    # ==================== Consumables ====================

    def refill_ink(self, printer_id: str, color: Optional[InkColor] = None) -> Dict:
        """Refill one channel, or every channel when color is None, to 100%"""
        def refill(state: PrinterInstance, now: datetime):
            channels = [self._require_channel(state, color)] if color else list(state.ink_levels)
            for channel in channels:
                state.ink_levels[channel] = 100.0
                resolve_errors(state, ErrorType.LOW_INK, color=channel)
            if not depleted_colors(state):
                resolve_errors(state, ErrorType.INK_DEPLETED)
            add_log(state, now, f"Refilled {', '.join(channels)} ink to 100%", config=self.config)
            recover_if_clear(state, now, self.config)
            return channels

        channels, state = self._transact(printer_id, refill, "refill ink")
        logger.info(f"✅ [{printer_id}] Refilled ink: {', '.join(channels)}")
        return self._result(state, f"{', '.join(channels)} ink refilled to 100%",
                            ink_levels=dict(state.ink_levels))

    def set_ink_level(self, printer_id: str, color: InkColor, level: float) -> Dict:
        if not 0 <= level <= 100:
            raise ValidationError("Ink level must be between 0 and 100")

        def set_level(state: PrinterInstance, now: datetime):
            channel = self._require_channel(state, color)
            state.ink_levels[channel] = float(level)
            if level > self.config.LOW_INK_THRESHOLD:
                resolve_errors(state, ErrorType.LOW_INK, color=channel)
            if not depleted_colors(state):
                resolve_errors(state, ErrorType.INK_DEPLETED)
            add_log(state, now, f"Set {channel} ink to {level}%", config=self.config)
            recover_if_clear(state, now, self.config)
            return channel

        channel, state = self._transact(printer_id, set_level, "set ink")
        return self._result(state, f"{channel} ink set to {level}%",
                            ink_levels=dict(state.ink_levels))

    def load_paper(self, printer_id: str, count: int, paper_size=None) -> Dict:
        if count <= 0:
            raise ValidationError("Paper count must be positive")

        def load(state: PrinterInstance, now: datetime):
            if paper_size is not None:
                ptype = get_printer_type(state.type_id)
                if ptype and paper_size not in ptype.supported_paper_sizes:
                    raise ValidationError(f"{ptype.model} does not support {paper_size.value} paper")
                state.paper_size = paper_size
            new_count = min(state.paper_tray_capacity, state.paper_count + count)
            added = new_count - state.paper_count
            state.paper_count = new_count
            if state.paper_count > 0:
                resolve_errors(state, ErrorType.OUT_OF_PAPER)
            add_log(state, now, f"Loaded {added} sheets of {state.paper_size.value} paper", config=self.config)
            recover_if_clear(state, now, self.config)
            return added

        added, state = self._transact(printer_id, load, "load paper")
        return self._result(state, f"Loaded {added} sheets", added=added,
                            paper_count=state.paper_count, capacity=state.paper_tray_capacity)

    def set_paper_count(self, printer_id: str, count: int) -> Dict:
        def set_count(state: PrinterInstance, now: datetime):
            if count < 0 or count > state.paper_tray_capacity:
                raise ValidationError(
                    f"Paper count must be between 0 and {state.paper_tray_capacity}"
                )
            state.paper_count = count
            if count > 0:
                resolve_errors(state, ErrorType.OUT_OF_PAPER)
            add_log(state, now, f"Paper count set to {count}", config=self.config)
            recover_if_clear(state, now, self.config)

        _, state = self._transact(printer_id, set_count, "set paper")
        return self._result(state, f"Paper count set to {count}", paper_count=state.paper_count)

    # ==================== Maintenance ====================

    def _record_maintenance(self, state: PrinterInstance, now: datetime):
        state.statistics.maintenance_operations += 1
        state.statistics.last_maintenance_date = now

    def clean_print_heads(self, printer_id: str) -> Dict:
        def clean(state: PrinterInstance, now: datetime):
            self._require_idle(state, "head cleaning")
            for channel, level in state.ink_levels.items():
                state.ink_levels[channel] = max(0.0, level - CLEANING_INK_COST)
            self._record_maintenance(state, now)
            add_log(state, now, "Print head cleaning cycle completed", config=self.config)

        _, state = self._transact(printer_id, clean, "clean heads")
        return self._result(state, "Print head cleaning cycle completed",
                            ink_levels=dict(state.ink_levels))

    def align_print_heads(self, printer_id: str) -> Dict:
        def align(state: PrinterInstance, now: datetime):
            self._require_idle(state, "head alignment")
            if state.paper_count < 1:
                raise OperationNotAllowedError("Load paper before aligning print heads")
            state.paper_count -= 1
            for channel, level in state.ink_levels.items():
                state.ink_levels[channel] = max(0.0, level - ALIGNMENT_INK_COST)
            self._record_maintenance(state, now)
            add_log(state, now, "Print head alignment completed", config=self.config)

        _, state = self._transact(printer_id, align, "align heads")
        return self._result(state, "Print head alignment completed")

    def run_nozzle_check(self, printer_id: str) -> Dict:
        def check(state: PrinterInstance, now: datetime):
            self._require_idle(state, "nozzle check")
            if state.paper_count < 1:
                raise OperationNotAllowedError("Load paper before running a nozzle check")
            state.paper_count -= 1
            add_log(state, now, "Nozzle check completed", config=self.config)
            return {
                channel: "ok" if level > 0 else "no_ink"
                for channel, level in state.ink_levels.items()
            }

        report, state = self._transact(printer_id, check, "nozzle check")
        return self._result(state, "Nozzle check completed", nozzles=report)

    def clear_paper_jam(self, printer_id: str) -> Dict:
        def clear(state: PrinterInstance, now: datetime):
            cleared = resolve_errors(state, ErrorType.PAPER_JAM)
            if cleared:
                add_log(state, now, "Paper jam cleared", config=self.config)
                recover_if_clear(state, now, self.config)
            return cleared

        cleared, state = self._transact(printer_id, clear, "clear jam")
        if not cleared:
            return self._result(state, f"Printer {printer_id} does not have a paper jam")
        logger.info(f"✅ [{printer_id}] Paper jam cleared")
        return self._result(state, "Paper jam cleared")

    def power_cycle(self, printer_id: str) -> Dict:
        """Abort the active job, clear every error and warm up again"""
        def cycle(state: PrinterInstance, now: datetime):
            if state.current_job is not None:
                fail_current_job(state, now, FailureReason.POWER_CYCLE, config=self.config)
            state.errors = []
            state.paused_at = None
            state.last_start_time = now
            set_status(state, PrinterStatus.WARMING_UP, now)
            state.status_since = now
            add_log(state, now, "Printer power cycled, warming up", config=self.config)

        _, state = self._transact(printer_id, cycle, "power cycle")
        logger.info(f"🔄 [{printer_id}] Power cycled")
        return self._result(state, "Printer power cycled", warmup_seconds=self.config.WARMUP_SECONDS)

    def factory_reset(self, printer_id: str) -> Dict:
        """
        Replace the snapshot with a freshly seeded one

        Also the explicit recovery path for a corrupt snapshot: whatever
        identity can still be read from the stored document is kept.
        """
        fleet = self.registry.ensure_fleet()
        if printer_id not in fleet.printer_ids:
            raise PrinterNotFoundError(printer_id)
        location_id = next(
            (loc.id for loc in fleet.locations.values() if printer_id in loc.printer_ids), None
        )
        key = printer_key(printer_id)
        now = self.clock()

        def attempt():
            try:
                raw = self.storage.load(key) or {}
            except CorruptSnapshotError as e:
                logger.warning(f"⚠️ Resetting unreadable snapshot {key}: {e}")
                raw = {}
            name = raw.get("name") or printer_id
            type_id = raw.get("type_id") or raw.get("typeId")
            if get_printer_type(type_id or "") is None:
                type_id = self.config.DEFAULT_PRINTER_TYPE
            expected = raw.get("version") if isinstance(raw.get("version"), int) else None

            instance = create_printer_instance(name, type_id, location_id, now=now,
                                               printer_id=printer_id, config=self.config)
            instance.logs.append(instance.logs[0].model_copy(
                update={"message": "Printer reset to factory defaults"}
            ))
            instance.version = (expected or 0) + 1
            self.registry.save_printer(instance, expected_version=expected)
            return instance

        state = with_retries(attempt, f"{key} factory reset", self.config)
        logger.warning(f"⚠️ [{printer_id}] Reset to factory defaults")
        return self._result(state, "Printer reset to factory defaults")

    # ==================== Queries ====================

    def _project_job(self, job: PrintJob, now: datetime) -> Dict:
        return {
            "id": job.id,
            "document": job.document_name,
            "pages": job.pages,
            "pages_printed": job.pages_printed,
            "color": job.color,
            "quality": job.quality.value,
            "status": job.status.value,
            "progress": round(job_progress(job, now), 1),
            "submitted_at": job.submitted_at.isoformat(),
            "started_at": job.started_at.isoformat() if job.started_at else None,
            "completed_at": job.completed_at.isoformat() if job.completed_at else None,
            "estimated_time_seconds": job.estimated_time_seconds,
            "failure_reason": job.failure_reason.value if job.failure_reason else None,
        }

    def maintenance_needed(self, state: PrinterInstance, now: datetime) -> bool:
        stats = state.statistics
        if stats.last_maintenance_date is None:
            return stats.total_pages_printed >= self.config.MAINTENANCE_PAGE_INTERVAL
        return (now - stats.last_maintenance_date).days >= self.config.MAINTENANCE_INTERVAL_DAYS

    def project_status(self, state: PrinterInstance, now: datetime) -> Dict:
        """Caller-facing status view of a reconciled snapshot"""
        depleted = depleted_colors(state)
        low = low_colors(state, self.config.LOW_INK_THRESHOLD)
        can_print = (
            state.status == PrinterStatus.READY
            and state.paper_count > 0
            and not depleted
        )

        issues: List[str] = []
        if state.paper_count == 0:
            issues.append("Out of paper")
        elif state.paper_count < self.config.LOW_PAPER_THRESHOLD:
            issues.append("Low paper")
        if depleted:
            issues.append(f"Ink depleted: {', '.join(depleted)}")
        elif low:
            issues.append(f"Low ink: {', '.join(low)}")
        if state.status == PrinterStatus.ERROR:
            issues.append("Printer error")

        if state.status == PrinterStatus.ERROR:
            operational_status = "error"
        elif can_print:
            operational_status = "ready"
        else:
            operational_status = "not_ready"

        ptype = get_printer_type(state.type_id)
        return {
            "id": state.id,
            "name": state.name,
            "type_id": state.type_id,
            "type": {
                "brand": ptype.brand,
                "model": ptype.model,
                "category": ptype.category,
                "ink_system": ptype.ink_system.value,
            } if ptype else None,
            "location_id": state.location_id,
            "status": state.status.value,
            "operational_status": operational_status,
            "can_print": can_print,
            "issues": issues,
            "ink_levels": {channel: round(level, 2) for channel, level in state.ink_levels.items()},
            "ink_status": {"depleted": depleted, "low": low},
            "paper": {
                "count": state.paper_count,
                "capacity": state.paper_tray_capacity,
                "size": state.paper_size.value,
            },
            "current_job": self._project_job(state.current_job, now) if state.current_job else None,
            "queue": {
                "length": len(state.queue),
                "jobs": [self._project_job(job, now) for job in state.queue],
            },
            "errors": [error.model_dump(mode="json") for error in state.errors],
            "uptime_seconds": max(0, int((now - state.last_start_time).total_seconds())),
            "maintenance_needed": self.maintenance_needed(state, now),
            "last_updated": state.last_updated.isoformat(),
            "version": state.version,
        }

    def get_status(self, printer_id: str) -> Dict:
        state, now = self._observe(printer_id)
        return self.project_status(state, now)

    def get_statistics(self, printer_id: str) -> Dict:
        state, _ = self._observe(printer_id)
        stats = state.statistics.model_dump(mode="json")
        finished = state.statistics.successful_jobs + state.statistics.failed_jobs
        stats["success_rate"] = (
            f"{state.statistics.successful_jobs / finished * 100:.1f}%" if finished else "N/A"
        )
        return stats

    def get_logs(self, printer_id: str, limit: int = 100) -> List[Dict]:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        state, _ = self._observe(printer_id)
        return [entry.model_dump(mode="json") for entry in state.logs[-limit:]]

    def get_capabilities(self, printer_id: str) -> Dict:
        instance = self.registry.get_printer(printer_id)
        return capabilities_for(self.registry.get_printer_type(instance.type_id))

    # ==================== Dispatch ====================

    def execute(self, printer_id: str, request) -> Dict:
        """Run a tagged control request (see schemas.ControlRequest)"""
        if isinstance(request, PauseRequest):
            return self.pause(printer_id)
        if isinstance(request, ResumeRequest):
            return self.resume(printer_id)
        if isinstance(request, CancelJobRequest):
            return self.cancel_job(printer_id, request.job_id)
        if isinstance(request, RefillInkRequest):
            return self.refill_ink(printer_id, request.color)
        if isinstance(request, SetInkRequest):
            return self.set_ink_level(printer_id, request.color, request.level)
        if isinstance(request, LoadPaperRequest):
            return self.load_paper(printer_id, request.count, request.paper_size)
        if isinstance(request, SetPaperRequest):
            return self.set_paper_count(printer_id, request.count)
        if isinstance(request, CleanHeadsRequest):
            return self.clean_print_heads(printer_id)
        if isinstance(request, AlignHeadsRequest):
            return self.align_print_heads(printer_id)
        if isinstance(request, NozzleCheckRequest):
            return self.run_nozzle_check(printer_id)
        if isinstance(request, ClearJamRequest):
            return self.clear_paper_jam(printer_id)
        if isinstance(request, PowerCycleRequest):
            return self.power_cycle(printer_id)
        if isinstance(request, FactoryResetRequest):
            return self.factory_reset(printer_id)
        raise ValidationError(f"Unsupported control request: {type(request).__name__}")
