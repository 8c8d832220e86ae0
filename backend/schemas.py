"""
Pydantic schemas for the printer simulator
Snapshots, fleet records, user settings and tagged request types
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _rename_legacy_keys(data, mapping):
    """Accept field names written by older snapshot versions"""
    if not isinstance(data, dict):
        return data
    data = dict(data)
    for old, new in mapping.items():
        if old in data and new not in data:
            data[new] = data.pop(old)
    return data

# ==================== Enums ====================

class PrinterStatus(str, Enum):
    OFFLINE = "offline"
    WARMING_UP = "warming_up"
    READY = "ready"
    PRINTING = "printing"
    PAUSED = "paused"
    ERROR = "error"
    SLEEP = "sleep"

class JobStatus(str, Enum):
    QUEUED = "queued"
    PRINTING = "printing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

class PrintQuality(str, Enum):
    DRAFT = "draft"
    NORMAL = "normal"
    HIGH = "high"
    PHOTO = "photo"

class PaperSize(str, Enum):
    A4 = "A4"
    LETTER = "Letter"
    LEGAL = "Legal"
    A3 = "A3"
    PHOTO_4X6 = "4x6"

class InkColor(str, Enum):
    CYAN = "cyan"
    MAGENTA = "magenta"
    YELLOW = "yellow"
    BLACK = "black"

class ErrorType(str, Enum):
    PAPER_JAM = "paper_jam"
    OUT_OF_PAPER = "out_of_paper"
    INK_DEPLETED = "ink_depleted"
    LOW_INK = "low_ink"
    HARDWARE_ERROR = "hardware_error"
    GENERAL = "general"

class ErrorSeverity(str, Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

class FailureReason(str, Enum):
    INK_DEPLETED = "ink_depleted"
    OUT_OF_PAPER = "out_of_paper"
    PAPER_JAM = "paper_jam"
    HARDWARE_ERROR = "hardware_error"
    POWER_CYCLE = "power_cycle"

class InkSystem(str, Enum):
    CARTRIDGE = "cartridge"
    TANK = "tank"
    TONER = "toner"

class ResponseStyle(str, Enum):
    TECHNICAL = "technical"
    FRIENDLY = "friendly"
    MINIMAL = "minimal"

TERMINAL_JOB_STATES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

# ==================== Snapshot Models ====================

class PrintJob(BaseModel):
    id: str
    document_name: str
    pages: int = Field(ge=1)
    color: bool = False
    quality: PrintQuality = PrintQuality.NORMAL
    paper_size: PaperSize = PaperSize.A4
    status: JobStatus = JobStatus.QUEUED
    progress: float = Field(default=0.0, ge=0, le=100)
    pages_printed: int = 0
    submitted_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_time_seconds: int = Field(ge=1)
    failure_reason: Optional[FailureReason] = None

    @model_validator(mode="before")
    @classmethod
    def _migrate(cls, data):
        return _rename_legacy_keys(data, {
            "documentName": "document_name",
            "paperSize": "paper_size",
            "submittedAt": "submitted_at",
            "startedAt": "started_at",
            "completedAt": "completed_at",
            "estimatedTime": "estimated_time_seconds",
            "current_page": "pages_printed",
        })

class PrinterError(BaseModel):
    type: ErrorType
    message: str
    timestamp: datetime
    severity: ErrorSeverity = ErrorSeverity.ERROR
    color: Optional[InkColor] = None

class LogEntry(BaseModel):
    timestamp: datetime
    level: Literal["info", "warning", "error"] = "info"
    message: str

def _zero_ink():
    return {color.value: 0.0 for color in InkColor}

def _full_ink():
    return {color.value: 100.0 for color in InkColor}

class Statistics(BaseModel):
    total_pages_printed: int = 0
    total_jobs: int = 0
    successful_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    total_ink_used: Dict[str, float] = Field(default_factory=_zero_ink)
    maintenance_operations: int = 0
    last_maintenance_date: Optional[datetime] = None

class PrinterSettings(BaseModel):
    default_quality: PrintQuality = PrintQuality.NORMAL
    default_paper_size: PaperSize = PaperSize.A4
    enable_error_simulation: bool = False
    error_probability: float = Field(default=0.02, ge=0, le=1)
    auto_wakeup: bool = True
    print_speed_multiplier: float = Field(default=1.0, gt=0)

class PrinterInstance(BaseModel):
    """Complete persisted state of one simulated printer"""

    id: str
    name: str
    type_id: str
    location_id: Optional[str] = None
    status: PrinterStatus = PrinterStatus.READY
    ink_levels: Dict[str, float] = Field(default_factory=_full_ink)
    paper_count: int = 0
    paper_size: PaperSize = PaperSize.A4
    paper_tray_capacity: int = Field(default=100, ge=1)
    queue: List[PrintJob] = Field(default_factory=list)
    current_job: Optional[PrintJob] = None
    completed_jobs: List[PrintJob] = Field(default_factory=list)
    errors: List[PrinterError] = Field(default_factory=list)
    logs: List[LogEntry] = Field(default_factory=list)
    statistics: Statistics = Field(default_factory=Statistics)
    settings: PrinterSettings = Field(default_factory=PrinterSettings)
    created_at: datetime = Field(default_factory=utcnow)
    last_start_time: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    status_since: datetime = Field(default_factory=utcnow)
    idle_since: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    version: int = 0

    @model_validator(mode="before")
    @classmethod
    def _migrate(cls, data):
        return _rename_legacy_keys(data, {
            "job_queue": "queue",
            "jobQueue": "queue",
            "typeId": "type_id",
            "locationId": "location_id",
            "inkLevels": "ink_levels",
            "paperCount": "paper_count",
            "paperSize": "paper_size",
            "paperTrayCapacity": "paper_tray_capacity",
            "currentJob": "current_job",
            "completedJobs": "completed_jobs",
            "lastUpdated": "last_updated",
            "lastStartTime": "last_start_time",
            "createdAt": "created_at",
        })

    @field_validator("ink_levels")
    @classmethod
    def _clamp_ink(cls, levels):
        return {color: max(0.0, min(100.0, float(level))) for color, level in levels.items()}

    @model_validator(mode="after")
    def _clamp_paper(self):
        self.paper_count = max(0, min(self.paper_tray_capacity, self.paper_count))
        return self

class PrinterType(BaseModel):
    """Immutable printer model template"""
    model_config = ConfigDict(frozen=True)

    id: str
    brand: str
    model: str
    category: str
    ink_system: InkSystem
    ink_colors: List[InkColor]
    paper_capacity: int
    ppm_mono: float
    ppm_color: Optional[float] = None
    ink_usage_factor: float = 1.0
    supported_paper_sizes: List[PaperSize] = Field(default_factory=lambda: [PaperSize.A4, PaperSize.LETTER])
    max_resolution_dpi: int = 1200
    duplex: bool = False
    wireless: bool = True
    scanner: bool = False

    @property
    def color_support(self) -> bool:
        return any(color != InkColor.BLACK for color in self.ink_colors)

class Location(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    icon: str = "📍"
    color: str = "#6e7781"
    printer_ids: List[str] = Field(default_factory=list)
    default_printer_id: Optional[str] = None
    sort_order: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class FleetRecord(BaseModel):
    locations: Dict[str, Location] = Field(default_factory=dict)
    printer_ids: List[str] = Field(default_factory=list)
    version: int = 0
    last_updated: datetime = Field(default_factory=utcnow)

class UserSettings(BaseModel):
    current_location_id: Optional[str] = None
    ask_before_switch: bool = False
    response_style: ResponseStyle = ResponseStyle.TECHNICAL
    version: int = 0

# ==================== Request Models ====================

class PrintRequest(BaseModel):
    document_name: str = Field(min_length=1, max_length=255)
    pages: int = Field(ge=1, le=10000)
    color: bool = False
    quality: Optional[PrintQuality] = None
    paper_size: Optional[PaperSize] = None

class SmartPrintRequest(PrintRequest):
    location_id: Optional[str] = None
    printer_id: Optional[str] = None
    confirmed_fallback: bool = False

class PauseRequest(BaseModel):
    action: Literal["pause"] = "pause"

class ResumeRequest(BaseModel):
    action: Literal["resume"] = "resume"

class CancelJobRequest(BaseModel):
    action: Literal["cancel_job"] = "cancel_job"
    job_id: str = Field(min_length=1)

class RefillInkRequest(BaseModel):
    action: Literal["refill_ink"] = "refill_ink"
    color: Optional[InkColor] = None  # None refills every channel

class SetInkRequest(BaseModel):
    action: Literal["set_ink"] = "set_ink"
    color: InkColor
    level: float = Field(ge=0, le=100)

class LoadPaperRequest(BaseModel):
    action: Literal["load_paper"] = "load_paper"
    count: int = Field(gt=0, le=10000)
    paper_size: Optional[PaperSize] = None

class SetPaperRequest(BaseModel):
    action: Literal["set_paper"] = "set_paper"
    count: int = Field(ge=0, le=10000)

class CleanHeadsRequest(BaseModel):
    action: Literal["clean_heads"] = "clean_heads"

class AlignHeadsRequest(BaseModel):
    action: Literal["align_heads"] = "align_heads"

class NozzleCheckRequest(BaseModel):
    action: Literal["nozzle_check"] = "nozzle_check"

class ClearJamRequest(BaseModel):
    action: Literal["clear_jam"] = "clear_jam"

class PowerCycleRequest(BaseModel):
    action: Literal["power_cycle"] = "power_cycle"

class FactoryResetRequest(BaseModel):
    action: Literal["factory_reset"] = "factory_reset"

ControlRequest = Annotated[
    Union[
        PauseRequest, ResumeRequest, CancelJobRequest, RefillInkRequest,
        SetInkRequest, LoadPaperRequest, SetPaperRequest, CleanHeadsRequest,
        AlignHeadsRequest, NozzleCheckRequest, ClearJamRequest,
        PowerCycleRequest, FactoryResetRequest,
    ],
    Field(discriminator="action"),
]

class AddPrinterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type_id: str
    location_id: Optional[str] = None

class UpdatePrinterRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    location_id: Optional[str] = None
    settings: Optional[Dict] = None

class AddLocationRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    icon: str = "📍"
    color: str = "#6e7781"

class UserSettingsUpdate(BaseModel):
    current_location_id: Optional[str] = None
    ask_before_switch: Optional[bool] = None
    response_style: Optional[ResponseStyle] = None

class RenameLocationRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)

class DefaultPrinterRequest(BaseModel):
    printer_id: str = Field(min_length=1)
