"""
Job lifecycle tests: timing estimates, progress and state transitions

Run:
    pytest tests/test_jobs.py -v --tb=short
"""

import pytest

from errors import OperationNotAllowedError
from helpers import T0, at, make_printer, queue_job
from jobs import (
    cancel_job, complete_job, estimated_time_seconds, fail_job, job_progress,
    page_start, pages_started, start_job,
)
from schemas import FailureReason, JobStatus, PrintQuality


# ---------------------------------------------------------------------------
# Estimates
# ---------------------------------------------------------------------------

class TestEstimatedTime:

    def test_normal_quality(self):
        assert estimated_time_seconds(10, PrintQuality.NORMAL, 15) == 40

    def test_quality_multipliers(self):
        assert estimated_time_seconds(10, PrintQuality.DRAFT, 15) == 28
        assert estimated_time_seconds(10, PrintQuality.PHOTO, 15) == 100

    def test_speed_multiplier(self):
        assert estimated_time_seconds(10, PrintQuality.NORMAL, 15, speed_multiplier=2) == 20

    def test_never_below_one_second(self):
        assert estimated_time_seconds(1, PrintQuality.DRAFT, 1000) == 1

    def test_job_uses_color_speed_on_color_printer(self):
        job = queue_job(make_printer(), pages=10, color=True)
        assert job.estimated_time_seconds == 86

    def test_mono_printer_ignores_color_flag_for_speed(self):
        job = queue_job(make_printer("hp-laserjet-pro-m404dn"), pages=10, color=True)
        assert job.estimated_time_seconds == 15


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

class TestProgress:

    def test_queued_job_has_no_progress(self):
        job = queue_job(make_printer(), pages=10)
        assert job_progress(job, at(30)) == 0.0
        assert pages_started(job, at(30)) == 0

    def test_progress_is_time_based(self):
        job = start_job(queue_job(make_printer(), pages=10), T0)
        assert job.estimated_time_seconds == 60
        assert job_progress(job, at(30)) == pytest.approx(50.0)
        assert job_progress(job, at(600)) == 100.0

    def test_pages_draw_when_they_start(self):
        job = start_job(queue_job(make_printer(), pages=10), T0)
        assert pages_started(job, T0) == 1
        assert pages_started(job, at(5.9)) == 1
        assert pages_started(job, at(6)) == 2
        assert pages_started(job, at(60)) == 10
        assert page_start(job, 6) == at(30)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class TestTransitions:

    def test_start_twice_rejected(self):
        job = start_job(queue_job(make_printer()), T0)
        with pytest.raises(OperationNotAllowedError):
            start_job(job, T0)

    def test_complete(self):
        job = complete_job(start_job(queue_job(make_printer(), pages=4), T0), at(24))
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100.0
        assert job.pages_printed == 4
        assert job.completed_at == at(24)

    def test_fail_freezes_progress_at_printed_pages(self):
        job = start_job(queue_job(make_printer(), pages=10), T0)
        job.pages_printed = 5
        fail_job(job, at(30), FailureReason.OUT_OF_PAPER)
        assert job.status == JobStatus.FAILED
        assert job.progress == 50.0
        assert job.failure_reason == FailureReason.OUT_OF_PAPER

    def test_cancel_queued_job(self):
        job = cancel_job(queue_job(make_printer()), T0)
        assert job.status == JobStatus.CANCELLED
        assert job.completed_at == T0

    def test_terminal_jobs_cannot_change(self):
        job = complete_job(start_job(queue_job(make_printer(), pages=1), T0), at(6))
        with pytest.raises(OperationNotAllowedError):
            cancel_job(job, at(7))
        with pytest.raises(OperationNotAllowedError):
            fail_job(job, at(7), FailureReason.PAPER_JAM)
