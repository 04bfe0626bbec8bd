"""
Evals API Router - datasets, evaluations, runs and annotation review

Endpoints:
- GET  /datasets                      - List uploaded datasets (cursor paginated)
- POST /datasets                      - Upload a JSONL dataset to the evaluation service
- GET  /datasets/{file_id}/content    - Records of a JSONL dataset
- GET  /evals                         - List evaluations
- POST /evals                         - Create an evaluation
- GET  /evals/{eval_id}               - Evaluation details
- GET  /evals/{eval_id}/runs          - List runs of an evaluation
- POST /evals/{eval_id}/runs          - Start a run (starts a new review session)
- GET  /evals/{eval_id}/runs/{run_id} - Run status (poll target)
- GET  /runs/{run_id}/annotations     - Annotations with rendered conversations
- POST /runs/{run_id}/annotations/{annotation_id} - Relabel an annotation
- GET  /runs/{run_id}/aggregation     - Label counts per level
- GET/DELETE /session, PUT /session/api-key - Review session state
"""

from typing import Dict, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile
from pydantic import BaseModel

from evalcore.client import DEFAULT_PAGE_SIZE, EvalServiceClient
from evalcore.config import Settings
from evalcore.conversation import parse_conversation, render_markdown_bold
from evalcore.logging_config import DebugLogger
from evalcore.models import Annotation, DEFAULT_TEMPLATE
from evalcore.session import EvalSession
from evalweb.sessions import clear_session_cookie, get_app_settings, get_client, get_session, get_store

router = APIRouter()
log = DebugLogger("evals")


class CreateEvalRequest(BaseModel):
    name: str
    model: str
    datasetId: str
    promptText: str
    variableMapping: Dict[str, str] = {}
    template: str = DEFAULT_TEMPLATE


class CreateRunRequest(BaseModel):
    name: str
    datasetId: str


class SaveAnnotationRequest(BaseModel):
    handoverReasonL1: Optional[str] = None
    handoverReasonL2: Optional[str] = None
    evalId: Optional[str] = None


class ApiKeyRequest(BaseModel):
    apiKey: Optional[str] = None


def annotation_view(annotation: Annotation) -> dict:
    data = annotation.to_dict()
    rendered = parse_conversation(annotation.conversation or "")
    data["conversationRendered"] = rendered
    data["conversationHtml"] = render_markdown_bold(rendered)
    return data


# ============================================================================
# Datasets
# ============================================================================

@router.get("/datasets")
def list_datasets(
    after: Optional[str] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    client: EvalServiceClient = Depends(get_client),
):
    log.request("GET", "/datasets", after=after, limit=limit)
    page = client.list_datasets(after=after, limit=limit)
    log.response(200, count=len(page.items), has_more=page.has_more)
    return page.to_dict(lambda d: d.to_dict())


@router.post("/datasets")
def upload_dataset(
    file: Optional[UploadFile] = File(None),
    client: EvalServiceClient = Depends(get_client),
):
    """Upload a converted .jsonl dataset."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="Please select a file to upload")
    if not file.filename.lower().endswith(".jsonl"):
        raise HTTPException(
            status_code=400,
            detail="No valid file to upload. Please convert Excel file first.",
        )

    log.request("POST", "/datasets", file=file.filename)
    uploaded = client.upload_dataset(file.filename, file.file.read())
    log.response(200, file_id=uploaded.get("id"))
    return uploaded


@router.get("/datasets/{file_id}/content")
def dataset_content(file_id: str, client: EvalServiceClient = Depends(get_client)):
    records = client.get_file_content(file_id)
    return {"data": records, "count": len(records)}


# ============================================================================
# Evals
# ============================================================================

@router.get("/evals")
def list_evals(
    after: Optional[str] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    client: EvalServiceClient = Depends(get_client),
):
    log.request("GET", "/evals", after=after, limit=limit)
    page = client.list_evals(after=after, limit=limit)
    log.response(200, count=len(page.items), has_more=page.has_more)
    return page.to_dict(lambda e: e.to_dict())


@router.post("/evals")
def create_eval(request: CreateEvalRequest, client: EvalServiceClient = Depends(get_client)):
    log.request("POST", "/evals", name=request.name, model=request.model)
    created = client.create_eval(
        request.name,
        request.model,
        request.datasetId,
        request.promptText,
        variable_mapping=request.variableMapping,
        template=request.template,
    )
    return created.to_dict()


@router.get("/evals/{eval_id}")
def get_eval(eval_id: str, client: EvalServiceClient = Depends(get_client)):
    return client.get_eval(eval_id)


# ============================================================================
# Runs
# ============================================================================

@router.get("/evals/{eval_id}/runs")
def list_runs(
    eval_id: str,
    after: Optional[str] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    client: EvalServiceClient = Depends(get_client),
):
    page = client.list_runs(eval_id, after=after, limit=limit)
    return page.to_dict(lambda r: r.to_dict())


@router.post("/evals/{eval_id}/runs")
def create_run(
    eval_id: str,
    request: CreateRunRequest,
    session: EvalSession = Depends(get_session),
    client: EvalServiceClient = Depends(get_client),
):
    log.request("POST", f"/evals/{eval_id}/runs", dataset=request.datasetId)
    run = client.create_run(eval_id, request.name, request.datasetId)
    session.start_run(eval_id, run.id)
    log.response(200, run_id=run.id)
    return run.to_dict()


@router.get("/evals/{eval_id}/runs/{run_id}")
def run_status(
    eval_id: str,
    run_id: str,
    session: EvalSession = Depends(get_session),
    client: EvalServiceClient = Depends(get_client),
    settings: Settings = Depends(get_app_settings),
):
    """Run details plus a terminal flag; clients re-poll until it is true."""
    session.open_run(eval_id, run_id)
    details = client.get_run(eval_id, run_id)
    data = details.to_dict()
    data["pollInterval"] = settings.server.poll_interval
    return data


# ============================================================================
# Annotations
# ============================================================================

@router.get("/runs/{run_id}/annotations")
def list_annotations(
    run_id: str,
    evalId: Optional[str] = None,
    after: Optional[str] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    session: EvalSession = Depends(get_session),
    client: EvalServiceClient = Depends(get_client),
):
    log.request("GET", f"/runs/{run_id}/annotations", eval_id=evalId, after=after)
    session.open_run(evalId, run_id)
    context = session.run_context(client)
    page = client.list_annotations(context, after=after, limit=limit)
    log.response(200, count=len(page.items), has_more=page.has_more)
    data = page.to_dict(annotation_view)
    data["testCriteriaId"] = context.test_id
    return data


@router.post("/runs/{run_id}/annotations/{annotation_id}")
def save_annotation(
    run_id: str,
    annotation_id: str,
    request: SaveAnnotationRequest,
    session: EvalSession = Depends(get_session),
    client: EvalServiceClient = Depends(get_client),
):
    log.request("POST", f"/runs/{run_id}/annotations/{annotation_id}")
    session.open_run(request.evalId, run_id)
    context = session.run_context(client)
    updated = client.save_annotation(
        context,
        annotation_id,
        handover_reason_l1=request.handoverReasonL1,
        handover_reason_l2=request.handoverReasonL2,
    )
    return {"success": True, "updated": updated}


@router.get("/runs/{run_id}/aggregation")
def run_aggregation(
    run_id: str,
    evalId: Optional[str] = None,
    session: EvalSession = Depends(get_session),
    client: EvalServiceClient = Depends(get_client),
):
    session.open_run(evalId, run_id)
    context = session.run_context(client)
    return client.get_aggregation(context).to_dict()


# ============================================================================
# Session
# ============================================================================

@router.get("/session")
def get_session_state(session: EvalSession = Depends(get_session)):
    return session.to_dict()


@router.delete("/session")
def reset_session(session: EvalSession = Depends(get_session)):
    """Forget the linked eval/run (navigating away from a run)."""
    session.invalidate()
    return session.to_dict()


@router.put("/session/api-key")
def set_api_key(request: ApiKeyRequest, session: EvalSession = Depends(get_session)):
    session.set_api_key(request.apiKey)
    return session.to_dict()


@router.post("/session/logout")
def end_session(response: Response, session: EvalSession = Depends(get_session),
                store=Depends(get_store)):
    """Drop the session entirely, API key included."""
    store.discard(session.session_id)
    clear_session_cookie(response)
    return {"success": True}
