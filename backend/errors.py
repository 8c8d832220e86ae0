"""
Simulator exceptions

Resource depletion and simulated hardware faults are never raised: they are
recorded on the snapshot as failed jobs and error entries. Only validation
and infrastructure problems surface as exceptions.
"""


class SimulatorError(Exception):
    """Base exception for simulator errors"""
    retryable = False


class ValidationError(SimulatorError):
    """Raised when a request is malformed or out of range"""
    pass


class OperationNotAllowedError(SimulatorError):
    """Raised when an operation is not valid in the printer's current state"""
    pass


class NotFoundError(SimulatorError):
    """Raised when a referenced entity does not exist"""
    pass


class PrinterNotFoundError(NotFoundError):
    def __init__(self, printer_id):
        self.printer_id = printer_id
        super().__init__(f"Printer {printer_id} not found")


class LocationNotFoundError(NotFoundError):
    def __init__(self, location_id):
        self.location_id = location_id
        super().__init__(f"Location {location_id} not found")


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class UnknownPrinterTypeError(NotFoundError):
    def __init__(self, type_id):
        self.type_id = type_id
        super().__init__(f"Unknown printer type: {type_id}")


class StorageUnavailableError(SimulatorError):
    """Raised when the storage backend cannot be reached"""
    retryable = True


class CorruptSnapshotError(SimulatorError):
    """Raised when a persisted snapshot is structurally invalid"""
    retryable = True

    def __init__(self, key, details):
        self.key = key
        self.details = details
        super().__init__(f"Corrupt snapshot at {key}: {details}")


class StaleSnapshotError(SimulatorError):
    """Raised when a snapshot changed between load and save"""
    retryable = True

    def __init__(self, key, expected, actual):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Snapshot {key} changed during update: "
            f"expected version={expected}, found={actual}"
        )
