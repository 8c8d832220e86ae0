"""
Resource model: ink and paper drawn by print jobs

Pure functions over a PrinterInstance. Consumption is computed per page and
applied one page boundary at a time by the reconciler.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import Config
from printer_types import get_printer_type
from schemas import FailureReason, InkColor, PrinterInstance, PrintJob, PrintQuality

# Ink consumption per page (percentage of a full cartridge)
INK_CONSUMPTION = {
    "mono": {"black": 0.5},
    "color": {"cyan": 0.6, "magenta": 0.6, "yellow": 0.6, "black": 0.3},
}

QUALITY_INK_FACTOR = {
    PrintQuality.DRAFT: 0.5,
    PrintQuality.NORMAL: 1.0,
    PrintQuality.HIGH: 1.5,
    PrintQuality.PHOTO: 2.5,
}

SHEETS_PER_PAGE = 1


@dataclass
class ResourceDelta:
    """Ink and paper drawn by a single page"""
    ink: Dict[str, float] = field(default_factory=dict)
    paper: int = SHEETS_PER_PAGE


def has_color_channels(instance: PrinterInstance) -> bool:
    return any(channel != InkColor.BLACK.value for channel in instance.ink_levels)


def required_colors(color: bool, instance: PrinterInstance) -> List[str]:
    """Ink channels a job draws from on this printer"""
    mode = "color" if color and has_color_channels(instance) else "mono"
    return [channel for channel in INK_CONSUMPTION[mode] if channel in instance.ink_levels]


def consume(job: PrintJob, instance: PrinterInstance) -> ResourceDelta:
    """Per-page resource draw for a job on a given printer"""
    ptype = get_printer_type(instance.type_id)
    usage_factor = ptype.ink_usage_factor if ptype else 1.0
    quality_factor = QUALITY_INK_FACTOR[job.quality]

    mode = "color" if job.color and has_color_channels(instance) else "mono"
    ink = {
        channel: rate * quality_factor * usage_factor
        for channel, rate in INK_CONSUMPTION[mode].items()
        if channel in instance.ink_levels
    }
    return ResourceDelta(ink=ink, paper=SHEETS_PER_PAGE)


def apply_delta(instance: PrinterInstance, delta: ResourceDelta) -> Optional[FailureReason]:
    """
    Draw one page worth of resources from the instance.

    Returns the failure reason when the page cannot be printed, None otherwise.
    Ink floors at 0; paper is only drawn for pages that actually print.
    """
    if instance.paper_count < delta.paper:
        return FailureReason.OUT_OF_PAPER

    depleted = False
    for channel, amount in delta.ink.items():
        level = instance.ink_levels.get(channel, 0.0)
        remaining = level - amount
        instance.ink_levels[channel] = max(0.0, remaining)
        used = instance.statistics.total_ink_used
        used[channel] = used.get(channel, 0.0) + min(level, amount)
        if remaining < 0:
            depleted = True

    if depleted:
        return FailureReason.INK_DEPLETED

    instance.paper_count -= delta.paper
    return None


def depleted_colors(instance: PrinterInstance, channels: Optional[List[str]] = None) -> List[str]:
    channels = channels if channels is not None else list(instance.ink_levels)
    return [c for c in channels if instance.ink_levels.get(c, 0.0) <= 0]


def low_colors(instance: PrinterInstance, threshold: float = Config.LOW_INK_THRESHOLD) -> List[str]:
    return [c for c, level in instance.ink_levels.items() if 0 < level <= threshold]
