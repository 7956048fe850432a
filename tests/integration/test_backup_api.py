"""Admin backup endpoints wired to an in-memory database through dependency overrides."""

from __future__ import annotations

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_backup_orchestrator, get_engine, get_restore_engine
from app.config import get_settings
from app.main import app
from app.services.backups import BackupOrchestrator
from app.services.restore import RestoreEngine


@pytest.fixture
async def client(engine, seeded_factory, settings) -> AsyncIterator[AsyncClient]:
  app.dependency_overrides[get_settings] = lambda: settings
  app.dependency_overrides[get_engine] = lambda: engine
  app.dependency_overrides[get_backup_orchestrator] = lambda: BackupOrchestrator(engine=engine, session_factory=seeded_factory, settings=settings)
  app.dependency_overrides[get_restore_engine] = lambda: RestoreEngine(engine=engine, settings=settings)
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
    yield http_client
  app.dependency_overrides.clear()


@pytest.mark.anyio
async def test_create_list_restore_and_delete(client: AsyncClient) -> None:
  created = await client.post("/admin/backups", json={"type": "date-range", "start_date": "2025-08-01", "end_date": "2025-08-31"})
  assert created.status_code == 201
  body = created.json()
  assert body["success"] is True
  backup_id = body["backup_id"]
  assert body["manifest"]["statistics"]["student_attendance_records"] == 3

  listing = (await client.get("/admin/backups")).json()
  assert listing["total"] == 1
  assert listing["items"][0]["backupId"] == backup_id

  restored = await client.post(f"/admin/backups/{backup_id}/restore")
  assert restored.status_code == 200
  assert restored.json()["success"] is True
  assert restored.json()["mode"] == "partial"
  assert restored.json()["statements_failed"] == 0

  deleted = await client.delete(f"/admin/backups/{backup_id}")
  assert deleted.status_code == 200
  assert (await client.get("/admin/backups")).json()["total"] == 0
  assert (await client.delete(f"/admin/backups/{backup_id}")).status_code == 404


@pytest.mark.anyio
async def test_date_range_backup_requires_ordered_dates(client: AsyncClient) -> None:
  missing = await client.post("/admin/backups", json={"type": "date-range", "start_date": "2025-08-01"})
  reversed_range = await client.post("/admin/backups", json={"type": "date-range", "start_date": "2025-08-31", "end_date": "2025-08-01"})
  unknown_type = await client.post("/admin/backups", json={"type": "hourly"})
  assert missing.status_code == 422
  assert reversed_range.status_code == 422
  assert unknown_type.status_code == 400


@pytest.mark.anyio
async def test_failed_step_is_reported_as_structured_failure(client: AsyncClient, settings) -> None:
  with patch("app.services.backups.write_sql_dump", AsyncMock(side_effect=RuntimeError("disk full"))):
    response = await client.post("/admin/backups", json={"type": "scheduled", "name": "nightly"})

  assert response.status_code == 500
  detail = response.json()["detail"]
  assert detail["success"] is False
  assert "sql_dump" in detail["reason"]
  assert (await client.get("/admin/backups")).json()["total"] == 0


@pytest.mark.anyio
async def test_prune_and_missing_archive_download(client: AsyncClient) -> None:
  created = await client.post("/admin/backups", json={"type": "semester", "semester": "Genap", "year": 2025})
  assert created.status_code == 201
  assert created.json()["manifest"]["scope"]["semester"] == "Genap"

  pruned = await client.post("/admin/backups/prune", json={"max_backups": 0})
  assert pruned.status_code == 200
  assert pruned.json() == {"removed": [created.json()["backup_id"]], "kept": 0}

  missing = await client.get("/admin/backups/semester_backup_missing/download")
  assert missing.status_code == 404


@pytest.mark.anyio
async def test_manual_archive_run(client: AsyncClient) -> None:
  response = await client.post("/admin/archive", json={"months": 72, "prune_live": True})
  assert response.status_code == 200
  body = response.json()
  assert body["success"] is True
  assert body["moved"] == {"absensi_siswa": 2, "absensi_guru": 1}
  assert body["pruned"] == {"absensi_siswa": 2, "absensi_guru": 1}

  invalid = await client.post("/admin/archive", json={"months": 0})
  assert invalid.status_code == 422


@pytest.mark.anyio
async def test_unknown_semester_name_is_rejected(client: AsyncClient) -> None:
  response = await client.post("/admin/backups", json={"type": "semester", "semester": "foo", "year": 2025})
  assert response.status_code == 422
  assert "Ganjil" in response.json()["detail"]
  assert (await client.get("/admin/backups")).json()["total"] == 0
