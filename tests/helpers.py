"""
Shared test helpers: a controllable clock, a scripted random source and
snapshot builders.
"""

from datetime import datetime, timedelta, timezone

from fleet import create_printer_instance
from jobs import create_job
from schemas import PrintQuality, PrintRequest

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


class FakeClock:
    """Callable clock frozen until advanced"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


class StubRandom:
    """random.Random stand-in returning scripted values"""

    def __init__(self, values=(0.99,), choice_index: int = 0):
        self.values = list(values)
        self.choice_index = choice_index
        self.calls = 0

    def random(self) -> float:
        value = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        return value

    def choice(self, seq):
        return seq[self.choice_index]


class ExplodingRandom:
    """Fails the test if the random source is consulted at all"""

    def random(self):
        raise AssertionError("random source should not be used")

    def choice(self, seq):
        raise AssertionError("random source should not be used")


def make_printer(type_id: str = "hp-envy-6055e", printer_id: str = "printer-test", **updates):
    instance = create_printer_instance("Test Printer", type_id, None, now=T0, printer_id=printer_id)
    for field, value in updates.items():
        setattr(instance, field, value)
    return instance


def queue_job(instance, pages: int = 10, color: bool = False,
              quality: PrintQuality = PrintQuality.NORMAL,
              submitted_at: datetime = T0, name: str = "report.pdf"):
    job = create_job(
        PrintRequest(document_name=name, pages=pages, color=color, quality=quality),
        instance, submitted_at,
    )
    instance.queue.append(job)
    instance.statistics.total_jobs += 1
    return job
