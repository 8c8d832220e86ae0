"""
Virtual Printer Fleet API
HTTP surface over the printer simulation service, fleet registry and smart router
Run: uvicorn backend:app --port 8000 --reload
"""
from fastapi import FastAPI, Depends, Body, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List

from config import Config
from database import init_db
from errors import (
    CorruptSnapshotError, NotFoundError, OperationNotAllowedError,
    SimulatorError, StaleSnapshotError, StorageUnavailableError, ValidationError,
)
from log_config import setup_logger
from printer_sim import PrinterService
from printer_types import capabilities_for
from schemas import (
    AddLocationRequest, AddPrinterRequest, ControlRequest, DefaultPrinterRequest,
    PrintRequest, RenameLocationRequest, SmartPrintRequest, UpdatePrinterRequest,
    UserSettingsUpdate,
)
from smart_router import RoutingResult, SmartRouter
from storage import StorageAdapter, create_storage_adapter

# ==================== Logging Setup ====================

logger = setup_logger("printer_fleet_api", "printer_fleet_api.log")

# ==================== Lifespan ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Prepare the storage backend on startup"""
    logger.info(f"🚀 Starting Virtual Printer Fleet API (storage: {Config.STORAGE_TYPE})")

    if Config.STORAGE_TYPE.lower() in ("sql", "database", "postgres"):
        try:
            init_db()
            logger.info("✅ Database initialized")
        except Exception as e:
            logger.error(f"❌ Database initialization failed: {e}")
            raise

    yield

    logger.info("🛑 Shutting down Virtual Printer Fleet API")

app = FastAPI(
    title="Virtual Printer Fleet API",
    version="1.0",
    description="Simulated printer fleet with catch-up reconciliation and smart fallback routing",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Error Handling ====================

ERROR_STATUS = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (OperationNotAllowedError, status.HTTP_409_CONFLICT),
    (StaleSnapshotError, status.HTTP_409_CONFLICT),
    (StorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (CorruptSnapshotError, status.HTTP_503_SERVICE_UNAVAILABLE),
]

@app.exception_handler(SimulatorError)
async def simulator_error_handler(request: Request, exc: SimulatorError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    if status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "detail": str(exc),
            "retryable": exc.retryable,
        }
    )

# ==================== Dependencies ====================

def get_storage() -> StorageAdapter:
    """Fresh adapter per request; nothing simulation-related is cached in-process"""
    return create_storage_adapter(Config)

def get_service(storage: StorageAdapter = Depends(get_storage)) -> PrinterService:
    return PrinterService(storage)

def get_router(service: PrinterService = Depends(get_service)) -> SmartRouter:
    return SmartRouter(service)

def routing_to_dict(result: RoutingResult) -> Dict:
    return {
        "location_id": result.location_id,
        "printer_id": result.printer.id if result.printer else None,
        "printer_name": result.printer.name if result.printer else None,
        "was_default": result.was_default,
        "fallback_reason": result.fallback_reason.value if result.fallback_reason else None,
        "default_printer_id": result.default_printer_id,
        "skipped": {pid: reason.value for pid, reason in result.skipped.items()},
    }

# ==================== System ====================

@app.get("/")
def root():
    return {
        "service": "Virtual Printer Fleet API",
        "version": "1.0",
        "storage": Config.STORAGE_TYPE,
    }

@app.get("/health")
def health_check(storage: StorageAdapter = Depends(get_storage)):
    """Health check endpoint"""
    storage_healthy = storage.health_check()
    return {
        "status": "healthy" if storage_healthy else "degraded",
        "timestamp": datetime.now().isoformat(),
        "storage": {
            "kind": storage.kind(),
            "healthy": storage_healthy,
        },
    }

@app.get("/fleet/summary")
def fleet_summary(service: PrinterService = Depends(get_service)):
    return service.registry.get_state_summary()

@app.post("/fleet/reset")
def reset_fleet(service: PrinterService = Depends(get_service)):
    """Reset entire fleet to the seeded defaults"""
    fleet = service.registry.reset_to_defaults()
    return {
        "message": "Fleet reset to defaults",
        "printers": len(fleet.printer_ids),
        "locations": len(fleet.locations),
    }

# ==================== Printer Types ====================

@app.get("/printer-types")
def list_printer_types(service: PrinterService = Depends(get_service)):
    return [capabilities_for(ptype) for ptype in service.registry.list_printer_types()]

# ==================== Printers ====================

@app.get("/printers")
def list_printers(service: PrinterService = Depends(get_service)):
    """Reconciled status of every printer (read-only)"""
    now = service.clock()
    return [
        service.project_status(service.reconcile(printer, now), now)
        for printer in service.registry.list_printers()
    ]

@app.post("/printers", status_code=status.HTTP_201_CREATED)
def add_printer(request: AddPrinterRequest, service: PrinterService = Depends(get_service)):
    instance = service.registry.add_printer(request.name, request.type_id, request.location_id)
    return service.project_status(instance, service.clock())

@app.get("/printers/{printer_id}")
def get_printer(printer_id: str, service: PrinterService = Depends(get_service)):
    return service.get_status(printer_id)

@app.patch("/printers/{printer_id}")
def update_printer(printer_id: str, request: UpdatePrinterRequest,
                   service: PrinterService = Depends(get_service)):
    registry = service.registry
    if request.name is not None:
        registry.rename_printer(printer_id, request.name)
    if "location_id" in request.model_fields_set:
        registry.move_printer(printer_id, request.location_id)
    if request.settings is not None:
        registry.update_printer_settings(printer_id, request.settings)
    return service.get_status(printer_id)

@app.delete("/printers/{printer_id}")
def remove_printer(printer_id: str, service: PrinterService = Depends(get_service)):
    service.registry.remove_printer(printer_id)
    return {"message": f"Printer {printer_id} removed", "printer_id": printer_id}

@app.get("/printers/{printer_id}/status")
def printer_status(printer_id: str, service: PrinterService = Depends(get_service)):
    return service.get_status(printer_id)

@app.get("/printers/{printer_id}/statistics")
def printer_statistics(printer_id: str, service: PrinterService = Depends(get_service)):
    return service.get_statistics(printer_id)

@app.get("/printers/{printer_id}/logs")
def printer_logs(printer_id: str, limit: int = Query(default=100, ge=1, le=1000),
                 service: PrinterService = Depends(get_service)) -> List[Dict]:
    return service.get_logs(printer_id, limit)

@app.get("/printers/{printer_id}/capabilities")
def printer_capabilities(printer_id: str, service: PrinterService = Depends(get_service)):
    return service.get_capabilities(printer_id)

@app.get("/printers/{printer_id}/queue")
def printer_queue(printer_id: str, service: PrinterService = Depends(get_service)):
    return service.get_queue(printer_id)

@app.post("/printers/{printer_id}/print", status_code=status.HTTP_201_CREATED)
def submit_print_job(printer_id: str, request: PrintRequest,
                     service: PrinterService = Depends(get_service)):
    return service.submit_print_job(printer_id, request)

@app.delete("/printers/{printer_id}/jobs/{job_id}")
def cancel_print_job(printer_id: str, job_id: str, service: PrinterService = Depends(get_service)):
    return service.cancel_job(printer_id, job_id)

@app.post("/printers/{printer_id}/control")
def control_printer(printer_id: str, request: ControlRequest = Body(...),
                    service: PrinterService = Depends(get_service)):
    """Pause, resume, refill, maintenance and reset operations, tagged by `action`"""
    logger.info(f"🎛️ [{printer_id}] {request.action}")
    return service.execute(printer_id, request)

# ==================== Locations ====================

@app.get("/locations")
def list_locations(service: PrinterService = Depends(get_service)):
    return [loc.model_dump(mode="json") for loc in service.registry.list_locations()]

@app.post("/locations", status_code=status.HTTP_201_CREATED)
def add_location(request: AddLocationRequest, service: PrinterService = Depends(get_service)):
    location = service.registry.add_location(
        request.name, request.description, request.icon, request.color
    )
    return location.model_dump(mode="json")

@app.get("/locations/{location_id}")
def get_location(location_id: str, service: PrinterService = Depends(get_service)):
    return service.registry.get_location(location_id).model_dump(mode="json")

@app.patch("/locations/{location_id}")
def rename_location(location_id: str, request: RenameLocationRequest,
                    service: PrinterService = Depends(get_service)):
    return service.registry.rename_location(location_id, request.name).model_dump(mode="json")

@app.delete("/locations/{location_id}")
def remove_location(location_id: str, service: PrinterService = Depends(get_service)):
    service.registry.remove_location(location_id)
    return {"message": f"Location {location_id} removed", "location_id": location_id}

@app.put("/locations/{location_id}/default-printer")
def set_default_printer(location_id: str, request: DefaultPrinterRequest,
                        service: PrinterService = Depends(get_service)):
    location = service.registry.set_default_printer(location_id, request.printer_id)
    return location.model_dump(mode="json")

@app.delete("/locations/{location_id}/default-printer")
def clear_default_printer(location_id: str, service: PrinterService = Depends(get_service)):
    return service.registry.clear_default_printer(location_id).model_dump(mode="json")

@app.get("/locations/{location_id}/best-printer")
def best_printer(location_id: str, color: bool = False, router: SmartRouter = Depends(get_router)):
    return routing_to_dict(router.find_best_printer(location_id, color))

# ==================== Smart Print ====================

@app.post("/print")
def smart_print(request: SmartPrintRequest, router: SmartRouter = Depends(get_router)):
    """Route a print request to the best printer, honouring the fallback confirmation gate"""
    return router.smart_print(request).to_dict()

# ==================== User Settings ====================

@app.get("/user-settings")
def get_user_settings(service: PrinterService = Depends(get_service)):
    return service.registry.get_user_settings().model_dump(mode="json")

@app.patch("/user-settings")
def update_user_settings(request: UserSettingsUpdate, service: PrinterService = Depends(get_service)):
    settings = service.registry.update_user_settings(**request.model_dump())
    return settings.model_dump(mode="json")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
