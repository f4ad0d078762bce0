"""
Order Import Router
Handles order export uploads and product assignment repair
"""
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel
from typing import Optional
import logging
import uuid

from services.assignment_repair import repair_product_assignments
from services.import_errors import OrderImportError
from services.order_importer import OrderImporter
from services.storage import StorageService, storage
from settings import MAX_UPLOAD_MB, sanitize_shop_id

logger = logging.getLogger(__name__)
router = APIRouter()


class FixAssignmentsRequest(BaseModel):
    shopId: Optional[str] = None
    dryRun: bool = True


def get_storage() -> StorageService:
    return storage


def get_importer(store: StorageService = Depends(get_storage)) -> OrderImporter:
    return OrderImporter(storage=store)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


async def _read_upload(file: Optional[UploadFile], request_id: str) -> bytes:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    content = await file.read()
    size = len(content or b"")
    logger.info(
        f"[{request_id}] Upload filename={file.filename!r} content_type={file.content_type!r} size={size} bytes"
    )
    if size > MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"File too large. Maximum size is {MAX_UPLOAD_MB}MB")
    return content


async def _run_import(
    importer: OrderImporter,
    file: Optional[UploadFile],
    request_id: str,
    shop_id: Optional[str] = None,
    dry_run: bool = False,
):
    try:
        content = await _read_upload(file, request_id)
        result = await importer.import_file(
            content,
            file.filename,
            file.content_type,
            shop_id=shop_id,
            dry_run=dry_run,
        )
    except OrderImportError as e:
        logger.warning(f"[{request_id}] Import rejected ({e.status_code}): {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except HTTPException as he:
        logger.error(f"[{request_id}] HTTP {he.status_code} during upload: {he.detail}")
        raise
    except Exception as e:
        logger.exception(f"[{request_id}] Upload error")
        raise HTTPException(status_code=500, detail=f"Upload failed: {str(e)}")

    logger.info(
        f"[{request_id}] Import done imported={result.imported} skipped={result.skipped} "
        f"errors={result.error_count} dry_run={dry_run}"
    )
    return result.to_dict()


@router.post("/orders/upload")
async def upload_orders(
    request: Request,
    file: Optional[UploadFile] = File(None),
    dryRun: bool = Form(False),
    importer: OrderImporter = Depends(get_importer),
):
    """Import an order export; each order's shop is resolved from its product tags."""
    return await _run_import(importer, file, _request_id(request), dry_run=dryRun)


@router.post("/shops/{shop_id}/upload-orders")
async def upload_shop_orders(
    shop_id: str,
    request: Request,
    file: Optional[UploadFile] = File(None),
    dryRun: bool = Form(False),
    importer: OrderImporter = Depends(get_importer),
):
    """Import an order export into one shop; product tags are ignored."""
    resolved_shop_id = sanitize_shop_id(shop_id)
    if not resolved_shop_id:
        raise HTTPException(status_code=400, detail="Shop id is required")
    return await _run_import(importer, file, _request_id(request), shop_id=resolved_shop_id, dry_run=dryRun)


@router.post("/orders/fix-product-assignments")
async def fix_product_assignments(
    payload: Optional[FixAssignmentsRequest] = None,
    store: StorageService = Depends(get_storage),
):
    """Move order items off combined products ("X + Y") onto product "X"."""
    payload = payload or FixAssignmentsRequest()
    try:
        return await repair_product_assignments(
            shop_id=sanitize_shop_id(payload.shopId),
            dry_run=payload.dryRun,
            storage=store,
        )
    except Exception as e:
        logger.exception("Product assignment repair failed")
        raise HTTPException(status_code=500, detail=f"Repair failed: {str(e)}")
