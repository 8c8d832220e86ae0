"""
Shared fixtures for the printer fleet simulator tests

Run:
    pytest tests/ -v --tb=short
"""

import os
import sys
from pathlib import Path

# Keep test runs off the filesystem and away from any local .env backend
os.environ["LOG_TO_FILE"] = "false"
os.environ["STORAGE_TYPE"] = "memory"

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

import pytest

from config import Config
from helpers import FakeClock, StubRandom
from printer_sim import PrinterService
from storage import MemoryStorage


class FastRetryConfig(Config):
    RETRY_DELAY = 0


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def rng():
    return StubRandom()


@pytest.fixture()
def storage():
    return MemoryStorage()


@pytest.fixture()
def service(storage, clock, rng):
    svc = PrinterService(storage, config=FastRetryConfig, clock=clock, rng=rng)
    svc.registry.ensure_fleet()
    return svc


@pytest.fixture()
def registry(service):
    return service.registry


def _printer_of_type(registry, type_id):
    return next(p.id for p in registry.list_printers() if p.type_id == type_id)


@pytest.fixture()
def envy_id(registry):
    """HP ENVY 6055e: home default, CMYK, 10 ppm mono / 7 ppm color"""
    return _printer_of_type(registry, "hp-envy-6055e")


@pytest.fixture()
def laserjet_id(registry):
    """HP LaserJet Pro: office default, mono toner"""
    return _printer_of_type(registry, "hp-laserjet-pro-m404dn")


@pytest.fixture()
def color_laserjet_id(registry):
    return _printer_of_type(registry, "hp-color-laserjet-pro-m454dw")
