"""
Labels API Router - generic buckets, domain label suggestions and the domain dashboard

Endpoints:
- GET  /generic                - Generic label buckets with counts
- POST /suggest                - Ask the service for domain labels for a bucket
- POST /accept                 - Accept a suggested domain label
- GET  /domain                 - Accepted domain label rules
- GET  /dashboard/aggregation  - Domain label counts per category/bucket/day
- GET  /transcripts            - Conversations tagged with a domain label
"""

from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from evalcore.client import EvalServiceClient
from evalcore.logging_config import DebugLogger
from evalweb.sessions import get_client

router = APIRouter()
log = DebugLogger("labels")


class SuggestRequest(BaseModel):
    bucketPath: str
    model: str


class AcceptRequest(BaseModel):
    bucketPath: str
    suggestedLabel: Dict[str, Any]
    cluster: Dict[str, Any]
    author: Optional[str] = None


@router.get("/generic")
def generic_labels(client: EvalServiceClient = Depends(get_client)):
    return [asdict(label) for label in client.list_generic_labels()]


@router.post("/suggest")
def suggest_labels(request: SuggestRequest, client: EvalServiceClient = Depends(get_client)):
    log.request("POST", "/labels/suggest", bucket=request.bucketPath, model=request.model)
    result = client.suggest_domain_labels(request.bucketPath, request.model)
    suggestions = [s.to_dict() for s in result["suggestions"]]
    log.response(200, suggestions=len(suggestions))
    return {"suggestions": suggestions, "rawResponse": result["rawResponse"]}


@router.post("/accept")
def accept_label(request: AcceptRequest, client: EvalServiceClient = Depends(get_client)):
    log.request("POST", "/labels/accept", bucket=request.bucketPath)
    client.accept_domain_label(
        request.bucketPath, request.suggestedLabel, request.cluster, author=request.author
    )
    return {"success": True}


@router.get("/domain")
def domain_labels(client: EvalServiceClient = Depends(get_client)):
    return [rule.to_dict() for rule in client.list_domain_labels()]


@router.get("/dashboard/aggregation")
def domain_aggregation(client: EvalServiceClient = Depends(get_client)):
    return client.get_domain_aggregation().to_dict()


@router.get("/transcripts")
def transcripts(
    domainLabel: str,
    after: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    client: EvalServiceClient = Depends(get_client),
):
    page = client.list_transcripts(domainLabel, limit=limit, after=after)
    return page.to_dict(lambda t: t.to_dict())
