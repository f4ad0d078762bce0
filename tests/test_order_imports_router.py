import logging
import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("DATABASE_URL", "")
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

pytest.importorskip("httpx", reason="TestClient requires httpx")

from fastapi.testclient import TestClient

import main
from routers import order_imports
from services.import_errors import ShopNotFoundError, UnsupportedFormatError
from services.order_importer import ImportResult


class RecordingImporter:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def import_file(self, content, filename, content_type=None, shop_id=None, dry_run=False):
        self.calls.append({"filename": filename, "shop_id": shop_id, "dry_run": dry_run, "size": len(content)})
        if self.error:
            raise self.error
        return ImportResult(imported=1, shop_stats={"Shop Weinstadt": 1})


class EmptyStorage:
    async def get_orders(self, shop_id=None):
        return []


@pytest.fixture
def importer():
    recording = RecordingImporter()
    main.app.dependency_overrides[order_imports.get_importer] = lambda: recording
    yield recording
    main.app.dependency_overrides.clear()


def _client():
    return TestClient(main.app, raise_server_exceptions=False)


def test_health_endpoints_carry_request_id():
    client = _client()

    assert client.get("/healthz").json() == {"ok": True}
    response = client.get("/", headers={"X-Request-Id": "abc-123"})
    assert response.headers["X-Request-Id"] == "abc-123"


def test_upload_returns_import_summary(importer):
    response = _client().post(
        "/api/orders/upload",
        files={"file": ("orders.csv", b"Name\n#1\n", "text/csv")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["imported"] == 1
    assert body["shopStats"] == {"Shop Weinstadt": 1}
    assert importer.calls == [{"filename": "orders.csv", "shop_id": None, "dry_run": False, "size": 8}]


def test_shop_upload_binds_shop_and_dry_run(importer):
    response = _client().post(
        "/api/shops/shop-1/upload-orders",
        files={"file": ("orders.xlsx", b"PK\x03\x04", "application/octet-stream")},
        data={"dryRun": "true"},
    )

    assert response.status_code == 200
    assert importer.calls[0]["shop_id"] == "shop-1"
    assert importer.calls[0]["dry_run"] is True


def test_missing_file_is_rejected(importer):
    response = _client().post("/api/orders/upload", data={"dryRun": "false"})

    assert response.status_code == 400
    assert response.json() == {"error": "No file uploaded"}
    assert importer.calls == []


def test_import_errors_map_to_status_codes():
    client = _client()
    for error, status in ((UnsupportedFormatError("Only CSV or Excel files"), 400), (ShopNotFoundError("Shop x not found"), 404)):
        failing = RecordingImporter(error=error)
        main.app.dependency_overrides[order_imports.get_importer] = lambda: failing
        response = client.post("/api/orders/upload", files={"file": ("orders.txt", b"x", "text/plain")})
        assert response.status_code == status
        assert response.json() == {"error": str(error)}
    main.app.dependency_overrides.clear()


def test_upload_size_limit(importer, monkeypatch):
    monkeypatch.setattr(order_imports, "MAX_UPLOAD_MB", 0)

    response = _client().post("/api/orders/upload", files={"file": ("orders.csv", b"Name\n#1\n", "text/csv")})

    assert response.status_code == 413
    assert importer.calls == []


def test_fix_product_assignments_defaults_to_dry_run():
    main.app.dependency_overrides[order_imports.get_storage] = lambda: EmptyStorage()
    try:
        response = _client().post("/api/orders/fix-product-assignments", json={})
    finally:
        main.app.dependency_overrides.clear()

    assert response.status_code == 200
    body = response.json()
    assert body["dryRun"] is True
    assert body["fixed"] == 0


def test_upload_request_log_carries_size_not_body(importer, caplog):
    caplog.set_level(logging.INFO, logger="main")

    _client().post(
        "/api/orders/upload",
        files={"file": ("orders.csv", b"Name\n#secret-order\n", "text/csv")},
        headers={"X-Request-Id": "rid-7"},
    )

    lines = [r.getMessage() for r in caplog.records if r.name == "main"]
    request_line = next(line for line in lines if line.startswith("REQ POST /api/orders/upload"))
    assert "body=multipart" in request_line
    assert "rid=rid-7" in request_line
    assert "#secret-order" not in " ".join(lines)
    assert any(line.startswith("RES /api/orders/upload status=200") for line in lines)
