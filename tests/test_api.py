"""
HTTP API tests

Every request in a test shares one in-memory store through a dependency
override; the wall clock is real, so assertions stick to states that hold
for the first seconds of a job.

Run:
    pytest tests/test_api.py -v --tb=short
"""

import pytest
from fastapi.testclient import TestClient

from backend import app, get_storage
from storage import MemoryStorage


@pytest.fixture()
def client():
    shared = MemoryStorage()
    app.dependency_overrides[get_storage] = lambda: shared
    yield TestClient(app)
    app.dependency_overrides.clear()


def printer_of_type(client, type_id):
    return next(p["id"] for p in client.get("/printers").json() if p["type_id"] == type_id)


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------

class TestSystem:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["storage"]["kind"] == "memory"

    def test_fleet_summary_seeds_on_first_use(self, client):
        body = client.get("/fleet/summary").json()
        assert body["printer_count"] == 6
        assert body["location_count"] == 2

    def test_printer_types(self, client):
        types = client.get("/printer-types").json()
        assert len(types) == 6
        assert {"type_id", "color_support", "paper_tray_capacity"} <= set(types[0])


# ---------------------------------------------------------------------------
# Printers
# ---------------------------------------------------------------------------

class TestPrinters:

    def test_print_and_status(self, client):
        envy = printer_of_type(client, "hp-envy-6055e")
        resp = client.post(f"/printers/{envy}/print", json={"document_name": "essay.pdf", "pages": 20})
        assert resp.status_code == 201
        assert resp.json()["queue_position"] == 0

        status = client.get(f"/printers/{envy}/status").json()
        assert status["status"] == "printing"
        assert status["current_job"]["document"] == "essay.pdf"

    def test_unknown_printer_is_404(self, client):
        resp = client.get("/printers/printer-missing/status")
        assert resp.status_code == 404
        assert resp.json()["error"] == "PrinterNotFoundError"
        assert resp.json()["retryable"] is False

    def test_invalid_print_request_is_422(self, client):
        envy = printer_of_type(client, "hp-envy-6055e")
        resp = client.post(f"/printers/{envy}/print", json={"document_name": "x", "pages": 0})
        assert resp.status_code == 422

    def test_control_actions(self, client):
        envy = printer_of_type(client, "hp-envy-6055e")
        resp = client.post(f"/printers/{envy}/control", json={"action": "set_ink", "color": "cyan", "level": 40})
        assert resp.status_code == 200
        assert resp.json()["ink_levels"]["cyan"] == 40.0

        resp = client.post(f"/printers/{envy}/control", json={"action": "refill_ink", "color": "cyan"})
        assert resp.json()["ink_levels"]["cyan"] == 100.0

        resp = client.post(f"/printers/{envy}/control", json={"action": "pause"})
        assert resp.json()["status"] == "paused"

    def test_control_validation(self, client):
        envy = printer_of_type(client, "hp-envy-6055e")
        resp = client.post(f"/printers/{envy}/control", json={"action": "set_ink", "color": "cyan", "level": 150})
        assert resp.status_code == 422
        resp = client.post(f"/printers/{envy}/control", json={"action": "self_destruct"})
        assert resp.status_code == 422

    def test_maintenance_while_printing_is_409(self, client):
        envy = printer_of_type(client, "hp-envy-6055e")
        client.post(f"/printers/{envy}/print", json={"document_name": "essay.pdf", "pages": 20})
        resp = client.post(f"/printers/{envy}/control", json={"action": "clean_heads"})
        assert resp.status_code == 409

    def test_cancel_job(self, client):
        envy = printer_of_type(client, "hp-envy-6055e")
        job_id = client.post(f"/printers/{envy}/print",
                             json={"document_name": "essay.pdf", "pages": 20}).json()["job_id"]
        resp = client.delete(f"/printers/{envy}/jobs/{job_id}")
        assert resp.status_code == 200
        assert client.get(f"/printers/{envy}/statistics").json()["cancelled_jobs"] == 1

    def test_add_update_remove_printer(self, client):
        resp = client.post("/printers", json={"name": "Studio", "type_id": "hp-smart-tank-5101",
                                              "location_id": "loc-home"})
        assert resp.status_code == 201
        printer_id = resp.json()["id"]

        resp = client.patch(f"/printers/{printer_id}", json={"name": "Studio Tank", "location_id": None})
        assert resp.json()["name"] == "Studio Tank"
        assert resp.json()["location_id"] is None

        assert client.delete(f"/printers/{printer_id}").status_code == 200
        assert client.get(f"/printers/{printer_id}").status_code == 404

    def test_logs_and_capabilities(self, client):
        envy = printer_of_type(client, "hp-envy-6055e")
        assert len(client.get(f"/printers/{envy}/logs", params={"limit": 1}).json()) == 1
        assert client.get(f"/printers/{envy}/capabilities").json()["color_support"] is True


# ---------------------------------------------------------------------------
# Locations and routing
# ---------------------------------------------------------------------------

class TestLocations:

    def test_location_crud(self, client):
        resp = client.post("/locations", json={"name": "Lab"})
        assert resp.status_code == 201
        location_id = resp.json()["id"]
        assert client.patch(f"/locations/{location_id}", json={"name": "Lab B"}).json()["name"] == "Lab B"
        assert client.delete(f"/locations/{location_id}").status_code == 200
        assert client.get(f"/locations/{location_id}").status_code == 404

    def test_default_printer_must_be_member(self, client):
        envy = printer_of_type(client, "hp-envy-6055e")
        resp = client.put("/locations/loc-office/default-printer", json={"printer_id": envy})
        assert resp.status_code == 400

    def test_best_printer_fallback(self, client):
        laserjet = printer_of_type(client, "hp-laserjet-pro-m404dn")
        client.post(f"/printers/{laserjet}/control", json={"action": "set_paper", "count": 0})
        body = client.get("/locations/loc-office/best-printer").json()
        assert body["was_default"] is False
        assert body["fallback_reason"] == "out_of_paper"
        assert body["skipped"] == {laserjet: "out_of_paper"}

    def test_smart_print_confirmation(self, client):
        laserjet = printer_of_type(client, "hp-laserjet-pro-m404dn")
        client.post(f"/printers/{laserjet}/control", json={"action": "pause"})
        client.patch("/user-settings", json={"ask_before_switch": True, "response_style": "friendly"})

        request = {"document_name": "Q3 report", "pages": 3, "location_id": "loc-office"}
        body = client.post("/print", json=request).json()
        assert body["outcome"] == "confirmation_required"
        assert body["notification"]["template_key"] == "printer_switch_ask"
        assert body["notification"]["style"] == "friendly"

        body = client.post("/print", json={**request, "confirmed_fallback": True}).json()
        assert body["outcome"] == "queued"
        assert body["used_fallback"] is True

    def test_user_settings(self, client):
        resp = client.patch("/user-settings", json={"current_location_id": "loc-home"})
        assert resp.json()["current_location_id"] == "loc-home"
        resp = client.patch("/user-settings", json={"current_location_id": "loc-missing"})
        assert resp.status_code == 404
