"""
Fleet registry tests: seeding, printer and location CRUD, user settings

Run:
    pytest tests/test_fleet.py -v --tb=short
"""

import threading

import pytest

from config import Config
from errors import (
    CorruptSnapshotError, LocationNotFoundError, PrinterNotFoundError,
    UnknownPrinterTypeError, ValidationError,
)
from fleet import FleetRegistry, create_printer_instance
from helpers import T0, FakeClock
from schemas import PrinterStatus, ResponseStyle
from storage import FLEET_KEY, USER_SETTINGS_KEY, MemoryStorage, printer_key


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------

class TestSeeding:

    def test_default_fleet_layout(self, registry):
        locations = registry.list_locations()
        assert [loc.name for loc in locations] == ["Office", "Home"]
        assert all(len(loc.printer_ids) == 3 for loc in locations)
        assert len(registry.list_printers()) == 6

    def test_default_printers(self, registry, laserjet_id, envy_id):
        assert registry.get_location("loc-office").default_printer_id == laserjet_id
        assert registry.get_location("loc-home").default_printer_id == envy_id

    def test_ensure_fleet_does_not_reseed(self, registry):
        first = registry.ensure_fleet()
        assert registry.ensure_fleet().printer_ids == first.printer_ids

    def test_reset_to_defaults_replaces_instances(self, registry, envy_id):
        fleet = registry.reset_to_defaults()
        assert envy_id not in fleet.printer_ids
        assert registry.storage.load(printer_key(envy_id)) is None
        assert len(fleet.printer_ids) == 6

    def test_printers_in_location_keep_insertion_order(self, registry):
        names = [p.name for p in registry.printers_in_location("loc-home")]
        assert names == ["HP DeskJet 2755e", "HP ENVY 6055e", "HP Smart Tank 5101"]

    def test_printer_type_catalog(self, registry):
        assert len(registry.list_printer_types()) == 6
        assert registry.get_printer_type("hp-envy-6055e").ppm_color == 7
        with pytest.raises(UnknownPrinterTypeError):
            registry.get_printer_type("hp-nonexistent")

    def test_state_summary(self, registry):
        summary = registry.get_state_summary()
        assert summary["printer_count"] == 6
        assert summary["location_count"] == 2

    def test_concurrent_first_requests_seed_once(self):
        storage = MemoryStorage()
        barrier = threading.Barrier(2, timeout=2)

        class RacingRegistry(FleetRegistry):
            def load_fleet(self):
                fleet = super().load_fleet()
                if fleet is None and not barrier.broken:
                    try:
                        barrier.wait()
                    except threading.BrokenBarrierError:
                        pass
                return fleet

        fleets = {}

        def first_request(name):
            registry = RacingRegistry(storage, config=Config, clock=FakeClock())
            fleets[name] = registry.ensure_fleet()

        threads = [threading.Thread(target=first_request, args=(name,)) for name in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stored = storage.load(FLEET_KEY)
        snapshot_keys = [key for key in storage._data if key.startswith("printer:")]
        assert len(stored["printer_ids"]) == 6
        assert sorted(snapshot_keys) == sorted(printer_key(pid) for pid in stored["printer_ids"])
        assert fleets["a"].printer_ids == fleets["b"].printer_ids == stored["printer_ids"]

    def test_seeding_over_existing_fleet_keeps_it(self, registry, storage):
        existing = registry.load_fleet()
        fleet = registry.seed_default_fleet()
        assert fleet.printer_ids == existing.printer_ids
        assert len([key for key in storage._data if key.startswith("printer:")]) == 6


# ---------------------------------------------------------------------------
# Printers
# ---------------------------------------------------------------------------

class TestPrinters:

    def test_new_instance_from_type(self):
        instance = create_printer_instance("Front desk", "hp-laserjet-pro-m404dn", now=T0)
        assert instance.ink_levels == {"black": 100.0}
        assert instance.paper_count == 280
        assert instance.paper_tray_capacity == 350
        assert instance.status == PrinterStatus.READY
        assert instance.idle_since == T0

    def test_unknown_type_rejected(self, registry):
        with pytest.raises(UnknownPrinterTypeError):
            registry.add_printer("Mystery", "hp-nonexistent")

    def test_add_printer_to_location(self, registry):
        instance = registry.add_printer("Lab printer", "hp-officejet-pro-9015e", "loc-home")
        assert instance.location_id == "loc-home"
        assert registry.get_location("loc-home").printer_ids[-1] == instance.id
        assert instance.id in registry.ensure_fleet().printer_ids

    def test_add_printer_unknown_location(self, registry):
        with pytest.raises(LocationNotFoundError):
            registry.add_printer("Lab printer", "hp-envy-6055e", "loc-nowhere")

    def test_add_printer_blank_name(self, registry):
        with pytest.raises(ValidationError):
            registry.add_printer("   ", "hp-envy-6055e")

    def test_rename_printer(self, registry, envy_id):
        before = registry.get_printer(envy_id).version
        renamed = registry.rename_printer(envy_id, "Kitchen ENVY")
        assert renamed.name == "Kitchen ENVY"
        assert registry.get_printer(envy_id).version == before + 1

    def test_remove_default_printer_clears_default(self, registry, envy_id):
        registry.remove_printer(envy_id)
        home = registry.get_location("loc-home")
        assert envy_id not in home.printer_ids
        assert home.default_printer_id is None
        with pytest.raises(PrinterNotFoundError):
            registry.get_printer(envy_id)

    def test_remove_unknown_printer(self, registry):
        with pytest.raises(PrinterNotFoundError):
            registry.remove_printer("printer-missing")

    def test_move_default_printer_clears_old_default(self, registry, laserjet_id):
        moved = registry.move_printer(laserjet_id, "loc-home")
        assert moved.location_id == "loc-home"
        office = registry.get_location("loc-office")
        assert laserjet_id not in office.printer_ids
        assert office.default_printer_id is None
        assert registry.get_location("loc-home").printer_ids[-1] == laserjet_id

    def test_update_settings_validates(self, registry, envy_id):
        updated = registry.update_printer_settings(envy_id, {"error_probability": 0.25})
        assert updated.settings.error_probability == 0.25
        with pytest.raises(ValidationError):
            registry.update_printer_settings(envy_id, {"error_probability": 3})

    def test_corrupt_snapshot_surfaces(self, registry, storage, envy_id):
        storage.save(printer_key(envy_id), {"name": "Broken", "ink_levels": "nope"})
        with pytest.raises(CorruptSnapshotError):
            registry.get_printer(envy_id)
        # listing skips it rather than failing outright
        assert len(registry.list_printers()) == 5

    def test_corrupt_fleet_record(self, registry, storage):
        storage.save(FLEET_KEY, {"locations": "nope"})
        with pytest.raises(CorruptSnapshotError):
            registry.load_fleet()


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

class TestLocations:

    def test_add_and_rename_location(self, registry):
        lab = registry.add_location("Lab", description="Third floor")
        assert lab.sort_order == 2
        renamed = registry.rename_location(lab.id, "Lab B")
        assert renamed.name == "Lab B"
        assert [loc.name for loc in registry.list_locations()] == ["Office", "Home", "Lab B"]

    def test_remove_location_unassigns_members(self, registry):
        members = list(registry.get_location("loc-office").printer_ids)
        registry.remove_location("loc-office")

        with pytest.raises(LocationNotFoundError):
            registry.get_location("loc-office")
        for printer_id in members:
            printer = registry.get_printer(printer_id)
            assert printer.location_id is None
        assert len(registry.list_printers()) == 6

    def test_remove_current_location_clears_setting(self, registry):
        registry.update_user_settings(current_location_id="loc-office", ask_before_switch=True)
        registry.remove_location("loc-office")
        settings = registry.get_user_settings()
        assert settings.current_location_id is None
        assert settings.ask_before_switch is True

    def test_remove_other_location_keeps_setting(self, registry):
        registry.update_user_settings(current_location_id="loc-home")
        registry.remove_location("loc-office")
        settings = registry.get_user_settings()
        assert settings.current_location_id == "loc-home"
        assert settings.version == 1

    def test_set_default_requires_membership(self, registry, envy_id):
        with pytest.raises(ValidationError):
            registry.set_default_printer("loc-office", envy_id)

    def test_set_and_clear_default(self, registry, color_laserjet_id):
        location = registry.set_default_printer("loc-office", color_laserjet_id)
        assert location.default_printer_id == color_laserjet_id
        assert registry.clear_default_printer("loc-office").default_printer_id is None

    def test_unknown_location(self, registry):
        with pytest.raises(LocationNotFoundError):
            registry.rename_location("loc-missing", "Nowhere")


# ---------------------------------------------------------------------------
# User settings
# ---------------------------------------------------------------------------

class TestUserSettings:

    def test_defaults(self, registry):
        settings = registry.get_user_settings()
        assert settings.ask_before_switch is False
        assert settings.current_location_id is None

    def test_partial_update(self, registry):
        registry.update_user_settings(current_location_id="loc-home", ask_before_switch=True)
        settings = registry.update_user_settings(response_style=ResponseStyle.FRIENDLY)
        assert settings.current_location_id == "loc-home"
        assert settings.ask_before_switch is True
        assert settings.response_style == ResponseStyle.FRIENDLY
        assert settings.version == 2

    def test_unknown_current_location(self, registry):
        with pytest.raises(LocationNotFoundError):
            registry.update_user_settings(current_location_id="loc-missing")

    def test_first_write_does_not_clobber_concurrent_one(self, registry, storage):
        original_save = storage.save
        competing = {"done": False}

        def save(key, data, expected_version=None):
            # another request creates the settings between our load and save
            if key == USER_SETTINGS_KEY and not competing["done"]:
                competing["done"] = True
                original_save(key, {"ask_before_switch": True, "version": 1})
            return original_save(key, data, expected_version)

        storage.save = save
        settings = registry.update_user_settings(current_location_id="loc-home")
        assert settings.current_location_id == "loc-home"
        assert settings.ask_before_switch is True
        assert settings.version == 2
