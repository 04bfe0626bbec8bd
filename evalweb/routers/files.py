"""
Files API Router - dataset conversion and annotation export

Endpoints:
- POST /conversion - Convert an uploaded .xlsx workbook to JSONL (translated to English)
- POST /export - Export a run's annotations as .xlsx or .jsonl
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from evalcore.client import EvalServiceClient
from evalcore.config import Settings
from evalcore.converter import UnsupportedFormatError, check_extension, convert_upload
from evalcore.exporter import export_annotations
from evalcore.logging_config import DebugLogger
from evalcore.models import RunContext
from evalcore.session import EvalSession
from evalcore.translation import Translator
from evalweb.sessions import get_app_settings, get_client, get_session, get_translator

router = APIRouter()
log = DebugLogger("files")


class ExportRequest(BaseModel):
    evalId: Optional[str] = None
    # The dashboard has always sent the run id as "evalRundId"
    evalRundId: Optional[str] = None
    evalRunId: Optional[str] = None
    testId: Optional[str] = None
    format: str = "xlsx"


def attachment(content: bytes, media_type: str, filename: str, **headers) -> Response:
    headers = {k.replace("_", "-"): str(v) for k, v in headers.items()}
    headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return Response(content=content, media_type=media_type, headers=headers)


@router.post("/conversion")
def convert_file(
    file: Optional[UploadFile] = File(None),
    settings: Settings = Depends(get_app_settings),
    translator: Translator = Depends(get_translator),
):
    """Convert an Excel workbook to JSONL, translating conversations to English."""
    if file is None or not file.filename:
        log.error("No file uploaded or file field missing")
        raise HTTPException(status_code=400, detail="No file uploaded or file field missing in the request")

    log.request("POST", "/conversion", file=file.filename)
    try:
        check_extension(file.filename)
    except UnsupportedFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))

    content = file.file.read()
    max_bytes = settings.conversion.max_upload_mb * 1024 * 1024
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large (max {settings.conversion.max_upload_mb}MB)",
        )
    log.info(f"File received: {file.filename} Size: {len(content)} bytes")

    # ConversionError is rendered as a 500 by the app-level handler
    result = convert_upload(
        file.filename,
        content,
        translator,
        settings.conversion,
        target_lang=settings.translation.target_lang,
    )

    log.convert("done", input=file.filename, output=result.filename,
                written=result.stats.rows_written, skipped=result.stats.rows_skipped)
    log.response(200, file=result.filename, rows=result.stats.rows_written, bytes=len(result.content))
    return attachment(
        result.content,
        "application/jsonl",
        result.filename,
        X_Rows_Written=result.stats.rows_written,
        X_Rows_Skipped=result.stats.rows_skipped,
    )


@router.post("/export")
def export_file(
    request: ExportRequest,
    session: EvalSession = Depends(get_session),
    client: EvalServiceClient = Depends(get_client),
):
    """Export all annotations of a run's test criteria."""
    run_id = request.evalRunId or request.evalRundId
    log.request("POST", "/export", eval_id=request.evalId, run_id=run_id, format=request.format)

    if request.format not in ("xlsx", "jsonl"):
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {request.format}")

    if request.evalId and run_id and request.testId:
        context = RunContext(eval_id=request.evalId, run_id=run_id, test_id=request.testId)
    else:
        context = session.run_context(client, eval_id=request.evalId, run_id=run_id)

    content, media_type, filename = export_annotations(client, context, request.format)
    log.response(200, file=filename, bytes=len(content))
    return attachment(content, media_type, filename)
