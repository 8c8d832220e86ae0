"""
Smart routing with fallback

Picks which printer in a location services a print request:
    1. the location's default printer, when eligible
    2. otherwise the first eligible member in insertion order
    3. otherwise nothing, with the reason the default was skipped
Substituting a printer for the default can be gated behind an explicit
user confirmation (UserSettings.ask_before_switch).
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from config import Config
from errors import CorruptSnapshotError, NotFoundError, ValidationError
from log_config import StructuredLogger
from resources import depleted_colors, required_colors
from schemas import Location, PrinterInstance, PrinterStatus, PrintRequest, SmartPrintRequest

logger = StructuredLogger("printer_router", "printer_router.log")


class FallbackReason(str, Enum):
    OFFLINE = "offline"
    PAUSED = "paused"
    OUT_OF_PAPER = "out_of_paper"
    INK_DEPLETED = "ink_depleted"
    ERROR = "error"
    WARMING_UP = "warming_up"
    BUSY = "busy"
    DEFAULT_NOT_FOUND = "default_not_found"
    NO_PRINTERS_IN_LOCATION = "no_printers_in_location"
    NO_ELIGIBLE_PRINTERS = "no_eligible_printers"


def check_eligibility(printer: PrinterInstance, color: bool = False) -> Optional[FallbackReason]:
    """None when the printer can take the job now, otherwise why not"""
    if printer.status in (PrinterStatus.OFFLINE, PrinterStatus.SLEEP):
        return FallbackReason.OFFLINE
    if printer.status == PrinterStatus.PAUSED:
        return FallbackReason.PAUSED
    if printer.paper_count <= 0:
        return FallbackReason.OUT_OF_PAPER
    if depleted_colors(printer, required_colors(color, printer)):
        return FallbackReason.INK_DEPLETED
    if printer.status == PrinterStatus.ERROR:
        return FallbackReason.ERROR
    if printer.status == PrinterStatus.WARMING_UP:
        return FallbackReason.WARMING_UP
    if printer.status == PrinterStatus.PRINTING:
        return FallbackReason.BUSY
    return None


@dataclass
class RoutingResult:
    printer: Optional[PrinterInstance]
    was_default: bool
    fallback_reason: Optional[FallbackReason] = None
    default_printer_id: Optional[str] = None
    location_id: Optional[str] = None
    skipped: Dict[str, FallbackReason] = field(default_factory=dict)

    @property
    def substituted(self) -> bool:
        """A printer other than an existing default was chosen"""
        return self.printer is not None and not self.was_default and self.default_printer_id is not None


def find_best_printer(location: Location, printers: List[PrinterInstance],
                      color: bool = False) -> RoutingResult:
    """
    Choose a printer among a location's (already reconciled) members

    Args:
        location: Location whose default is preferred
        printers: Member snapshots in the location's stable order
        color: Whether the job needs color ink

    Returns:
        RoutingResult; printer is None when nothing is eligible
    """
    default_id = location.default_printer_id
    result = RoutingResult(printer=None, was_default=False,
                           default_printer_id=default_id, location_id=location.id)
    if not printers:
        result.fallback_reason = FallbackReason.NO_PRINTERS_IN_LOCATION
        return result

    default_reason = None
    if default_id is not None:
        default = next((p for p in printers if p.id == default_id), None)
        default_reason = check_eligibility(default, color) if default else FallbackReason.DEFAULT_NOT_FOUND
        if default_reason is None:
            result.printer = default
            result.was_default = True
            return result
        result.skipped[default_id] = default_reason

    for printer in printers:
        if printer.id == default_id:
            continue
        reason = check_eligibility(printer, color)
        if reason is None:
            result.printer = printer
            result.fallback_reason = default_reason
            return result
        result.skipped[printer.id] = reason

    result.fallback_reason = default_reason or FallbackReason.NO_ELIGIBLE_PRINTERS
    return result


@dataclass
class Notification:
    """Template key plus variables, rendered by an external formatter"""
    template_key: str
    style: str
    variables: Dict[str, str] = field(default_factory=dict)


@dataclass
class SmartPrintResult:
    success: bool
    outcome: str  # queued | confirmation_required | unavailable
    printer_id: Optional[str] = None
    printer_name: Optional[str] = None
    job_id: Optional[str] = None
    estimated_time_seconds: Optional[int] = None
    used_fallback: bool = False
    fallback_reason: Optional[str] = None
    requires_confirmation: bool = False
    notification: Optional[Notification] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


class _CalmRandom:
    """Random source for routing previews: fault rolls never hit"""

    def random(self):
        return 1.0

    def choice(self, seq):
        return seq[0]


class SmartRouter:
    """Routing on top of the fleet registry and the printer service"""

    def __init__(self, service, config=Config):
        self.service = service
        self.registry = service.registry
        self.config = config

    def find_best_printer(self, location_id: str, color: bool = False) -> RoutingResult:
        """
        Reconciles member snapshots in memory only; nothing is persisted and
        the service random source is not advanced
        """
        location = self.registry.get_location(location_id)
        now = self.service.clock()
        printers = [
            self.service.reconcile(printer, now, rng=_CalmRandom())
            for printer in self.registry.printers_in_location(location_id)
        ]
        result = find_best_printer(location, printers, color)

        logger.log_event("routing_decision", {
            "location_id": location_id,
            "color": color,
            "printer_id": result.printer.id if result.printer else None,
            "was_default": result.was_default,
            "fallback_reason": result.fallback_reason.value if result.fallback_reason else None,
            "skipped": {pid: reason.value for pid, reason in result.skipped.items()},
        })
        return result

    def _resolve_location(self, request: SmartPrintRequest, settings) -> str:
        if request.location_id:
            return request.location_id
        locations = self.registry.list_locations()
        if settings.current_location_id:
            if any(loc.id == settings.current_location_id for loc in locations):
                return settings.current_location_id
            logger.log_event("stale_current_location", {
                "location_id": settings.current_location_id,
            }, level="warning")
        if not locations:
            raise ValidationError("No location specified and no default location set")
        return locations[0].id

    def _switch_notification(self, template_key: str, style: str, routing: RoutingResult) -> Notification:
        default_name = "Default printer"
        if routing.default_printer_id:
            try:
                default_name = self.registry.load_printer(routing.default_printer_id).name
            except (NotFoundError, CorruptSnapshotError) as e:
                logger.log_error("default_printer_lookup", e)
        reason = routing.fallback_reason.value if routing.fallback_reason else "unavailable"
        return Notification(
            template_key=template_key,
            style=style,
            variables={
                "default_printer": default_name,
                "fallback_printer": routing.printer.name,
                "reason": reason,
            },
        )

    def _submit(self, printer: PrinterInstance, request: SmartPrintRequest) -> Dict:
        print_request = PrintRequest(**request.model_dump(include=set(PrintRequest.model_fields)))
        return self.service.submit_print_job(printer.id, print_request)

    def smart_print(self, request: SmartPrintRequest) -> SmartPrintResult:
        settings = self.registry.get_user_settings()
        style = settings.response_style.value

        # An explicit printer bypasses routing
        if request.printer_id:
            printer = self.registry.get_printer(request.printer_id)
            submitted = self._submit(printer, request)
            return SmartPrintResult(
                success=True, outcome="queued",
                printer_id=printer.id, printer_name=printer.name,
                job_id=submitted["job_id"],
                estimated_time_seconds=submitted["estimated_time_seconds"],
            )

        location_id = self._resolve_location(request, settings)
        routing = self.find_best_printer(location_id, request.color)
        reason = routing.fallback_reason.value if routing.fallback_reason else None

        if routing.printer is None:
            logger.log_event("no_printer_available", {
                "location_id": location_id, "reason": reason,
            }, level="warning")
            return SmartPrintResult(
                success=False, outcome="unavailable",
                fallback_reason=reason,
                notification=Notification(
                    template_key="no_printer_available", style=style,
                    variables={"location_id": location_id, "reason": reason or "unavailable"},
                ),
                error=f"No available printers ({reason})",
            )

        printer = routing.printer
        if routing.substituted and settings.ask_before_switch and not request.confirmed_fallback:
            logger.log_event("confirmation_required", {
                "location_id": location_id,
                "default_printer_id": routing.default_printer_id,
                "fallback_printer_id": printer.id,
                "reason": reason,
            })
            return SmartPrintResult(
                success=False, outcome="confirmation_required",
                printer_id=printer.id, printer_name=printer.name,
                used_fallback=True, fallback_reason=reason,
                requires_confirmation=True,
                notification=self._switch_notification("printer_switch_ask", style, routing),
            )

        submitted = self._submit(printer, request)
        notification = None
        if routing.substituted:
            notification = self._switch_notification("printer_switch_notify", style, routing)

        logger.log_event("smart_print_queued", {
            "location_id": location_id,
            "printer_id": printer.id,
            "job_id": submitted["job_id"],
            "used_fallback": routing.substituted,
        })
        return SmartPrintResult(
            success=True, outcome="queued",
            printer_id=printer.id, printer_name=printer.name,
            job_id=submitted["job_id"],
            estimated_time_seconds=submitted["estimated_time_seconds"],
            used_fallback=routing.substituted,
            fallback_reason=reason if routing.substituted else None,
            notification=notification,
        )
