"""
Fleet registry: printer instances, locations, printer types and user settings

Persistence goes through the storage contract only. Every write is a
versioned compare-and-swap retried on conflict, so two requests racing on
the same record never silently overwrite each other.
"""

import time
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from config import Config
from log_config import setup_logger
from errors import (
    CorruptSnapshotError, LocationNotFoundError, PrinterNotFoundError,
    StaleSnapshotError, UnknownPrinterTypeError, ValidationError,
)
from printer_types import PRINTER_TYPES, get_printer_type as lookup_printer_type
from schemas import (
    FleetRecord, Location, LogEntry, PrinterInstance, PrinterSettings,
    PrinterStatus, PrinterType, UserSettings, utcnow,
)
from storage import ABSENT, FLEET_KEY, USER_SETTINGS_KEY, StorageAdapter, printer_key

logger = setup_logger("printer_fleet", "printer_fleet.log")

# Seed layout: (location id, name, description, icon, color, [(printer name, type id)], default index)
DEFAULT_LOCATIONS = [
    ("loc-office", "Office", "Office printers for business use", "🏢", "#1f6feb", [
        ("HP LaserJet Pro", "hp-laserjet-pro-m404dn"),
        ("HP Color LaserJet", "hp-color-laserjet-pro-m454dw"),
        ("HP OfficeJet Pro 9015e", "hp-officejet-pro-9015e"),
    ], 0),
    ("loc-home", "Home", "Home printers for personal use", "🏠", "#238636", [
        ("HP DeskJet 2755e", "hp-deskjet-2755e"),
        ("HP ENVY 6055e", "hp-envy-6055e"),
        ("HP Smart Tank 5101", "hp-smart-tank-5101"),
    ], 1),
]


def new_printer_id() -> str:
    return f"printer-{uuid.uuid4().hex[:12]}"


def new_location_id() -> str:
    return f"loc-{uuid.uuid4().hex[:12]}"


def create_printer_instance(name: str, type_id: str, location_id: Optional[str] = None,
                            now: datetime = None, printer_id: str = None,
                            config=Config) -> PrinterInstance:
    """Fresh instance seeded from a printer type: full ink, tray partly loaded, ready"""
    ptype = lookup_printer_type(type_id)
    if ptype is None:
        raise UnknownPrinterTypeError(type_id)

    now = now or utcnow()
    printer_id = printer_id or new_printer_id()
    return PrinterInstance(
        id=printer_id,
        name=name,
        type_id=type_id,
        location_id=location_id,
        status=PrinterStatus.READY,
        ink_levels={color.value: 100.0 for color in ptype.ink_colors},
        paper_count=int(ptype.paper_capacity * config.INITIAL_PAPER_FRACTION),
        paper_size=ptype.supported_paper_sizes[0],
        paper_tray_capacity=ptype.paper_capacity,
        logs=[LogEntry(timestamp=now, message=f'Printer "{name}" initialized')],
        created_at=now,
        last_start_time=now,
        last_updated=now,
        status_since=now,
        idle_since=now,
    )


def with_retries(operation: Callable, description: str, config=Config):
    """Run `operation`, retrying on optimistic-concurrency conflicts"""
    for attempt in range(config.MAX_RETRIES):
        try:
            return operation()
        except StaleSnapshotError as e:
            if attempt < config.MAX_RETRIES - 1:
                logger.warning(f"⚠️ Conflict on {description} (attempt {attempt + 1}): {e}")
                time.sleep(config.RETRY_DELAY * (attempt + 1))
            else:
                logger.error(f"❌ Giving up on {description} after {config.MAX_RETRIES} attempts")
                raise


class FleetRegistry:
    """CRUD over the persisted fleet"""

    def __init__(self, storage: StorageAdapter, config=Config, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.config = config
        self.clock = clock

    # ==================== Fleet Record ====================

    def load_fleet(self) -> Optional[FleetRecord]:
        raw = self.storage.load(FLEET_KEY)
        if raw is None:
            return None
        try:
            return FleetRecord.model_validate(raw)
        except PydanticValidationError as e:
            raise CorruptSnapshotError(FLEET_KEY, str(e))

    def ensure_fleet(self) -> FleetRecord:
        """Load the fleet record, seeding the default fleet when none exists"""
        fleet = self.load_fleet()
        if fleet is None:
            fleet = self.seed_default_fleet()
        return fleet

    def seed_default_fleet(self) -> FleetRecord:
        now = self.clock()
        fleet = FleetRecord(version=1, last_updated=now)

        for sort_order, (loc_id, name, description, icon, color, members, default_index) in enumerate(DEFAULT_LOCATIONS):
            location = Location(
                id=loc_id, name=name, description=description, icon=icon, color=color,
                sort_order=sort_order, created_at=now, updated_at=now,
            )
            for printer_name, type_id in members:
                instance = create_printer_instance(printer_name, type_id, loc_id, now=now, config=self.config)
                instance.version = 1
                self.storage.save(printer_key(instance.id), instance.model_dump(mode="json"))
                location.printer_ids.append(instance.id)
                fleet.printer_ids.append(instance.id)
            location.default_printer_id = location.printer_ids[default_index]
            fleet.locations[loc_id] = location

        try:
            self.storage.save(FLEET_KEY, fleet.model_dump(mode="json"), expected_version=ABSENT)
        except StaleSnapshotError:
            # another request seeded first; drop our instances and use its fleet
            for printer_id in fleet.printer_ids:
                self.storage.clear(printer_key(printer_id))
            logger.info("ℹ️ Default fleet seeded concurrently, using the stored one")
            winner = self.load_fleet()
            if winner is None:
                raise
            return winner
        logger.info(f"✅ Seeded default fleet: {len(fleet.locations)} locations, {len(fleet.printer_ids)} printers")
        return fleet

    def reset_to_defaults(self) -> FleetRecord:
        """Drop every instance and reseed the default fleet"""
        fleet = self.load_fleet()
        if fleet is not None:
            for printer_id in fleet.printer_ids:
                self.storage.clear(printer_key(printer_id))
        self.storage.clear(FLEET_KEY)
        logger.warning("⚠️ Fleet reset to defaults")
        return self.seed_default_fleet()

    def update_fleet(self, mutate: Callable[[FleetRecord], object]):
        """Apply `mutate` to the fleet record and save it with compare-and-swap"""
        def attempt():
            fleet = self.ensure_fleet()
            expected = fleet.version
            result = mutate(fleet)
            fleet.version = expected + 1
            fleet.last_updated = self.clock()
            self.storage.save(FLEET_KEY, fleet.model_dump(mode="json"), expected_version=expected)
            return result

        return with_retries(attempt, FLEET_KEY, self.config)

    def get_state_summary(self) -> Dict:
        fleet = self.ensure_fleet()
        return {
            "printer_count": len(fleet.printer_ids),
            "location_count": len(fleet.locations),
            "locations": [
                {"id": loc.id, "name": loc.name, "printer_count": len(loc.printer_ids),
                 "default_printer_id": loc.default_printer_id}
                for loc in self.list_locations()
            ],
        }

    # ==================== Printer Snapshots ====================

    def load_printer(self, printer_id: str) -> PrinterInstance:
        """Raw persisted snapshot, not reconciled"""
        key = printer_key(printer_id)
        raw = self.storage.load(key)
        if raw is None:
            raise PrinterNotFoundError(printer_id)
        try:
            return PrinterInstance.model_validate(raw)
        except PydanticValidationError as e:
            raise CorruptSnapshotError(key, str(e))

    def save_printer(self, instance: PrinterInstance, expected_version: Optional[int] = None):
        self.storage.save(printer_key(instance.id), instance.model_dump(mode="json"),
                          expected_version=expected_version)

    def update_printer(self, printer_id: str, mutate: Callable[[PrinterInstance], object]):
        """
        Load -> mutate -> save a printer snapshot's administrative fields

        Returns:
            (result of mutate, saved snapshot)
        """
        def attempt():
            instance = self.load_printer(printer_id)
            expected = instance.version
            result = mutate(instance)
            instance.version = expected + 1
            instance.last_updated = self.clock()
            self.save_printer(instance, expected_version=expected)
            return result, instance

        return with_retries(attempt, printer_key(printer_id), self.config)

    # ==================== Printers ====================

    def list_printers(self) -> List[PrinterInstance]:
        printers = []
        for printer_id in self.ensure_fleet().printer_ids:
            try:
                printers.append(self.load_printer(printer_id))
            except PrinterNotFoundError:
                logger.warning(f"⚠️ Fleet lists {printer_id} but no snapshot exists")
            except CorruptSnapshotError as e:
                logger.error(f"❌ Skipping corrupt snapshot: {e}")
        return printers

    def get_printer(self, printer_id: str) -> PrinterInstance:
        if printer_id not in self.ensure_fleet().printer_ids:
            raise PrinterNotFoundError(printer_id)
        return self.load_printer(printer_id)

    def printers_in_location(self, location_id: str) -> List[PrinterInstance]:
        """Member snapshots in the location's stable insertion order"""
        location = self.get_location(location_id)
        printers = []
        for printer_id in location.printer_ids:
            try:
                printers.append(self.load_printer(printer_id))
            except PrinterNotFoundError:
                logger.warning(f"⚠️ Location {location_id} lists missing printer {printer_id}")
            except CorruptSnapshotError as e:
                logger.error(f"❌ Skipping corrupt snapshot in {location_id}: {e}")
        return printers

    def add_printer(self, name: str, type_id: str, location_id: Optional[str] = None) -> PrinterInstance:
        if not name or not name.strip():
            raise ValidationError("Printer name must not be empty")
        fleet = self.ensure_fleet()
        if location_id is not None and location_id not in fleet.locations:
            raise LocationNotFoundError(location_id)

        instance = create_printer_instance(name.strip(), type_id, location_id,
                                           now=self.clock(), config=self.config)
        instance.version = 1
        self.save_printer(instance)

        def register(fleet: FleetRecord):
            if location_id is not None and location_id not in fleet.locations:
                raise LocationNotFoundError(location_id)
            fleet.printer_ids.append(instance.id)
            if location_id is not None:
                location = fleet.locations[location_id]
                location.printer_ids.append(instance.id)
                location.updated_at = self.clock()

        try:
            self.update_fleet(register)
        except Exception:
            self.storage.clear(printer_key(instance.id))
            raise
        logger.info(f"✅ Added printer {instance.id} ({type_id}) to {location_id or 'no location'}")
        return instance

    def rename_printer(self, printer_id: str, name: str) -> PrinterInstance:
        if not name or not name.strip():
            raise ValidationError("Printer name must not be empty")
        self.get_printer(printer_id)

        def rename(instance: PrinterInstance):
            instance.name = name.strip()

        _, instance = self.update_printer(printer_id, rename)
        return instance

    def move_printer(self, printer_id: str, location_id: Optional[str]) -> PrinterInstance:
        """Reassign a printer; moving a location's default clears that default"""
        fleet = self.ensure_fleet()
        if printer_id not in fleet.printer_ids:
            raise PrinterNotFoundError(printer_id)
        if location_id is not None and location_id not in fleet.locations:
            raise LocationNotFoundError(location_id)

        def relink(fleet: FleetRecord):
            now = self.clock()
            for location in fleet.locations.values():
                if printer_id in location.printer_ids and location.id != location_id:
                    location.printer_ids.remove(printer_id)
                    if location.default_printer_id == printer_id:
                        location.default_printer_id = None
                    location.updated_at = now
            if location_id is not None:
                target = fleet.locations[location_id]
                if printer_id not in target.printer_ids:
                    target.printer_ids.append(printer_id)
                    target.updated_at = now

        self.update_fleet(relink)

        def set_location(instance: PrinterInstance):
            instance.location_id = location_id

        _, instance = self.update_printer(printer_id, set_location)
        logger.info(f"Moved printer {printer_id} to {location_id or 'no location'}")
        return instance

    def remove_printer(self, printer_id: str):
        def unlink(fleet: FleetRecord):
            if printer_id not in fleet.printer_ids:
                raise PrinterNotFoundError(printer_id)
            fleet.printer_ids.remove(printer_id)
            for location in fleet.locations.values():
                if printer_id in location.printer_ids:
                    location.printer_ids.remove(printer_id)
                    location.updated_at = self.clock()
                if location.default_printer_id == printer_id:
                    location.default_printer_id = None

        self.update_fleet(unlink)
        self.storage.clear(printer_key(printer_id))
        logger.info(f"🗑️ Removed printer {printer_id}")

    def update_printer_settings(self, printer_id: str, settings: Dict) -> PrinterInstance:
        self.get_printer(printer_id)

        def apply(instance: PrinterInstance):
            merged = {**instance.settings.model_dump(), **settings}
            try:
                instance.settings = PrinterSettings.model_validate(merged)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid printer settings: {e}")

        _, instance = self.update_printer(printer_id, apply)
        return instance

    # ==================== Locations ====================

    def list_locations(self) -> List[Location]:
        return sorted(self.ensure_fleet().locations.values(), key=lambda loc: loc.sort_order)

    def get_location(self, location_id: str) -> Location:
        location = self.ensure_fleet().locations.get(location_id)
        if location is None:
            raise LocationNotFoundError(location_id)
        return location

    def add_location(self, name: str, description: str = None, icon: str = "📍",
                     color: str = "#6e7781") -> Location:
        if not name or not name.strip():
            raise ValidationError("Location name must not be empty")

        def create(fleet: FleetRecord):
            now = self.clock()
            location = Location(
                id=new_location_id(), name=name.strip(), description=description,
                icon=icon, color=color, sort_order=len(fleet.locations),
                created_at=now, updated_at=now,
            )
            fleet.locations[location.id] = location
            return location

        location = self.update_fleet(create)
        logger.info(f"✅ Added location {location.id} ({location.name})")
        return location

    def rename_location(self, location_id: str, name: str) -> Location:
        if not name or not name.strip():
            raise ValidationError("Location name must not be empty")

        def rename(fleet: FleetRecord):
            location = fleet.locations.get(location_id)
            if location is None:
                raise LocationNotFoundError(location_id)
            location.name = name.strip()
            location.updated_at = self.clock()
            return location

        return self.update_fleet(rename)

    def remove_location(self, location_id: str):
        """Delete a location; its printers become unassigned, never deleted"""
        def drop(fleet: FleetRecord):
            location = fleet.locations.pop(location_id, None)
            if location is None:
                raise LocationNotFoundError(location_id)
            return list(location.printer_ids)

        members = self.update_fleet(drop)

        if self.get_user_settings().current_location_id == location_id:
            def forget(settings: UserSettings):
                if settings.current_location_id == location_id:
                    settings.current_location_id = None

            self._update_settings(forget)

        def unassign(instance: PrinterInstance):
            if instance.location_id == location_id:
                instance.location_id = None

        for printer_id in members:
            try:
                self.update_printer(printer_id, unassign)
            except PrinterNotFoundError:
                logger.warning(f"⚠️ Member {printer_id} of removed location has no snapshot")
        logger.info(f"🗑️ Removed location {location_id}, unassigned {len(members)} printers")

    def set_default_printer(self, location_id: str, printer_id: str) -> Location:
        def assign(fleet: FleetRecord):
            location = fleet.locations.get(location_id)
            if location is None:
                raise LocationNotFoundError(location_id)
            if printer_id not in fleet.printer_ids:
                raise PrinterNotFoundError(printer_id)
            if printer_id not in location.printer_ids:
                raise ValidationError(f"Printer {printer_id} is not in location {location_id}")
            location.default_printer_id = printer_id
            location.updated_at = self.clock()
            return location

        return self.update_fleet(assign)

    def clear_default_printer(self, location_id: str) -> Location:
        def unassign(fleet: FleetRecord):
            location = fleet.locations.get(location_id)
            if location is None:
                raise LocationNotFoundError(location_id)
            location.default_printer_id = None
            location.updated_at = self.clock()
            return location

        return self.update_fleet(unassign)

    # ==================== Printer Types ====================

    def list_printer_types(self) -> List[PrinterType]:
        return list(PRINTER_TYPES)

    def get_printer_type(self, type_id: str) -> PrinterType:
        ptype = lookup_printer_type(type_id)
        if ptype is None:
            raise UnknownPrinterTypeError(type_id)
        return ptype

    # ==================== User Settings ====================

    def get_user_settings(self) -> UserSettings:
        return self._parse_settings(self.storage.load(USER_SETTINGS_KEY))

    def _parse_settings(self, raw: Optional[Dict]) -> UserSettings:
        if raw is None:
            return UserSettings()
        try:
            return UserSettings.model_validate(raw)
        except PydanticValidationError as e:
            raise CorruptSnapshotError(USER_SETTINGS_KEY, str(e))

    def update_user_settings(self, **changes) -> UserSettings:
        """Apply non-None changes; the current location must exist"""
        location_id = changes.get("current_location_id")
        if location_id is not None and location_id not in self.ensure_fleet().locations:
            raise LocationNotFoundError(location_id)

        def apply(settings: UserSettings):
            for field, value in changes.items():
                if value is not None:
                    setattr(settings, field, value)

        return self._update_settings(apply)

    def _update_settings(self, mutate: Callable[[UserSettings], object]) -> UserSettings:
        """Compare-and-swap on the settings document; the first write must create it"""
        def attempt():
            raw = self.storage.load(USER_SETTINGS_KEY)
            settings = self._parse_settings(raw)
            expected = settings.version if raw is not None else ABSENT
            mutate(settings)
            settings.version += 1
            self.storage.save(USER_SETTINGS_KEY, settings.model_dump(mode="json"),
                              expected_version=expected)
            return settings

        return with_retries(attempt, USER_SETTINGS_KEY, self.config)
