"""
HTTP client for the external evaluation service.

The service owns files, evals, runs, annotations, label suggestions and
aggregations; this client only shapes requests and responses.

Usage:
    client = EvalServiceClient("http://localhost:8080", api_key="sk-...")
    page = client.list_evals(limit=8)
    run = client.create_run(eval_id, "Nightly run", dataset_id)
"""

import json
from typing import Any, Dict, List, Optional

import requests

from evalcore.config import ExternalApiConfig
from evalcore.logging_config import DebugLogger
from evalcore.models import (
    AggregationData,
    Annotation,
    Dataset,
    DomainLabelAggregation,
    DomainLabelRule,
    DomainLabelSuggestion,
    Eval,
    GenericLabel,
    RunContext,
    RunDetails,
    Transcript,
    build_annotation_update,
    build_eval_payload,
    build_run_payload,
    parse_label_suggestions,
)
from evalcore.pagination import Page, resolve_has_more, resolve_last_id

log = DebugLogger("client")

DEFAULT_PAGE_SIZE = 8


class ExternalServiceError(Exception):
    """The evaluation service could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidRequestError(ValueError):
    """The caller passed ids or options the operation cannot work with."""


class MissingApiKeyError(ValueError):
    """An operation that needs an API key was attempted without one."""


class EvalServiceClient:
    """Thin wrapper over requests.Session for the evaluation service API."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 60,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or None
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: ExternalApiConfig, api_key: Optional[str] = None,
                    session: Optional[requests.Session] = None) -> "EvalServiceClient":
        return cls(config.base_url, api_key=api_key or config.api_key,
                   timeout=config.timeout, session=session)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _headers(self, json_body: bool = True) -> Dict[str, str]:
        headers = {}
        if json_body:
            headers["Content-Type"] = "application/json"
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def require_api_key(self, action: str) -> None:
        if not self.api_key:
            raise MissingApiKeyError(f"API key is required to {action}. Please set it in Settings.")

    def _request(self, method: str, path: str, action: str, params: Optional[Dict[str, Any]] = None,
                 body: Any = None, files=None, data=None) -> requests.Response:
        url = f"{self.base_url}{path}"
        log.external(method, url, params=params or {})
        try:
            response = self.session.request(
                method,
                url,
                params={k: v for k, v in (params or {}).items() if v is not None} or None,
                json=body,
                files=files,
                data=data,
                headers=self._headers(json_body=files is None),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            log.error(f"Failed to {action}", e)
            raise ExternalServiceError(f"Failed to {action}: {e}") from e

        if not response.ok:
            message = _error_message(response) or f"Failed to {action}: {response.status_code}"
            log.error(f"Failed to {action}: {response.status_code} {message}")
            raise ExternalServiceError(message, status_code=response.status_code)
        return response

    def _json(self, method: str, path: str, action: str, **kwargs) -> Any:
        response = self._request(method, path, action, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(f"Failed to {action}: invalid JSON response") from e

    # ------------------------------------------------------------------
    # Files / datasets
    # ------------------------------------------------------------------

    def list_datasets(self, after: Optional[str] = None, limit: int = DEFAULT_PAGE_SIZE) -> Page[Dataset]:
        payload = self._json("GET", "/v1/files", "fetch datasets",
                             params={"purpose": "evals", "limit": limit, "order": "desc", "after": after})
        raw = _data_list(payload)
        items = [Dataset.from_external(f) for f in raw]
        return Page(items=items, has_more=resolve_has_more(payload, raw, limit),
                    last_id=resolve_last_id(payload, items, lambda d: d.id))

    def upload_dataset(self, filename: str, content: bytes, purpose: str = "evals") -> Dict[str, Any]:
        return self._json("POST", "/v1/files", "upload dataset",
                          files={"file": (filename, content, "application/jsonl")},
                          data={"purpose": purpose})

    def get_file_content(self, file_id: str) -> List[Dict[str, Any]]:
        """Download a JSONL file; lines that are not valid JSON are dropped."""
        file_id = (file_id or "").strip()
        if not file_id:
            raise InvalidRequestError("Invalid file ID")
        response = self._request("GET", f"/v1/files/{file_id}/content", "fetch file content")

        records = []
        for line in response.text.splitlines():
            if not line.strip():
                continue
            try:
                records.append(json.loads(line))
            except ValueError as e:
                log.warning(f"Error parsing JSONL line in {file_id}: {e}")
        log.info(f"Parsed {len(records)} records from file {file_id}")
        return records

    # ------------------------------------------------------------------
    # Evals & runs
    # ------------------------------------------------------------------

    def list_evals(self, after: Optional[str] = None, limit: int = DEFAULT_PAGE_SIZE) -> Page[Eval]:
        payload = self._json("GET", "/v1/evals", "fetch evaluations",
                             params={"limit": limit, "order": "desc", "after": after})
        raw = _data_list(payload)
        items = [Eval.from_external(e) for e in raw]
        return Page(items=items, has_more=resolve_has_more(payload, raw, limit),
                    last_id=resolve_last_id(payload, items, lambda e: e.id))

    def get_eval(self, eval_id: str) -> Dict[str, Any]:
        return self._json("GET", f"/v1/evals/{eval_id}", "fetch evaluation details")

    def create_eval(self, name: str, model: str, dataset_id: str, prompt_text: str,
                    variable_mapping: Optional[Dict[str, str]] = None,
                    template: str = "handover-taxonomy") -> Eval:
        variable_mapping = variable_mapping or {}
        payload = build_eval_payload(name, model, prompt_text, variable_mapping)
        data = self._json("POST", "/v1/evals", "create evaluation", body=payload)

        created = Eval.from_external(data)
        created.model = model
        created.template = template
        created.dataset_id = dataset_id
        created.variable_mapping = variable_mapping
        log.info(f"Created evaluation {created.id} ({name})")
        return created

    def create_run(self, eval_id: str, name: str, dataset_id: str) -> RunDetails:
        self.require_api_key("create a run")
        data = self._json("POST", f"/v1/evals/{eval_id}/runs", "create run",
                          body=build_run_payload(name, dataset_id))
        run = RunDetails.from_external(data)
        run.eval_id = run.eval_id or eval_id
        log.info(f"Created run {run.id} for evaluation {eval_id}")
        return run

    def list_runs(self, eval_id: str, after: Optional[str] = None,
                  limit: int = DEFAULT_PAGE_SIZE) -> Page[RunDetails]:
        payload = self._json("GET", f"/v1/evals/{eval_id}/runs", "fetch eval runs",
                             params={"limit": limit, "order": "desc", "after": after})
        raw = _data_list(payload)
        items = [RunDetails.from_external(r) for r in raw]
        return Page(items=items, has_more=resolve_has_more(payload, raw, limit),
                    last_id=resolve_last_id(payload, items, lambda r: r.id))

    def get_run(self, eval_id: str, run_id: str) -> RunDetails:
        if not eval_id or eval_id == "unknown":
            raise InvalidRequestError("Evaluation ID is required to fetch run details")
        data = self._json("GET", f"/v1/evals/{eval_id}/runs/{run_id}", "fetch run details")
        return RunDetails.from_external(data)

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def list_annotations(self, context: RunContext, after: Optional[str] = None,
                         limit: int = DEFAULT_PAGE_SIZE) -> Page[Annotation]:
        payload = self._json("GET", context.annotations_path(), "fetch annotations",
                             params={"limit": limit, "order": "desc", "after": after})
        raw = _data_list(payload)
        items = [Annotation.from_external(a) for a in raw]
        return Page(items=items, has_more=resolve_has_more(payload, raw, limit),
                    last_id=resolve_last_id(payload, items, lambda a: a.id))

    def save_annotation(self, context: RunContext, annotation_id: str,
                        handover_reason_l1: Optional[str] = None,
                        handover_reason_l2: Optional[str] = None) -> bool:
        """Returns False when there was nothing to update."""
        body = build_annotation_update(handover_reason_l1, handover_reason_l2)
        if body is None:
            return False
        self._request("POST", f"{context.annotations_path()}/{annotation_id}",
                      "update annotation", body=body)
        log.info(f"Annotation {annotation_id} updated")
        return True

    def get_aggregation(self, context: RunContext) -> AggregationData:
        data = self._json("GET", f"{context.annotations_path()}/aggregation", "fetch aggregation data")
        return AggregationData.from_external(data)

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def list_generic_labels(self) -> List[GenericLabel]:
        data = self._json("GET", "/v1/buckets/labels/generic", "fetch generic labels")
        return [GenericLabel(path=l.get("path", ""), count=int(l.get("count") or 0)) for l in data or []]

    def suggest_domain_labels(self, bucket_path: str, model: str) -> Dict[str, Any]:
        """Returns {"suggestions": [...], "rawResponse": {...}}."""
        self.require_api_key("request domain label suggestions")
        data = self._json("POST", "/v1/buckets/labels/suggest", "fetch domain suggestions",
                          body={"bucketPath": bucket_path, "model": model})
        suggestions: List[DomainLabelSuggestion] = parse_label_suggestions(data)
        log.info(f"Processed {len(suggestions)} domain label suggestions for {bucket_path}")
        return {"suggestions": suggestions, "rawResponse": data}

    def accept_domain_label(self, bucket_path: str, suggested_label: Dict[str, Any],
                            cluster: Dict[str, Any], author: Optional[str] = None) -> None:
        self.require_api_key("accept domain label")
        self._request("POST", "/v1/labels/accept", "accept domain label", body={
            "bucketPath": bucket_path,
            "suggestedLabel": suggested_label,
            "cluster": cluster,
            "author": author or "unknown",
        })
        log.info(f"Accepted domain label {suggested_label.get('path')} for {bucket_path}")

    def list_domain_labels(self) -> List[DomainLabelRule]:
        data = self._json("GET", "/v1/buckets/labels/domain", "fetch domain labels")
        return [DomainLabelRule.from_external(r) for r in data or []]

    def get_domain_aggregation(self) -> DomainLabelAggregation:
        self.require_api_key("fetch domain label aggregation")
        data = self._json("POST", "/v1/dashboard/domains/aggregation", "fetch domain label aggregation")
        return DomainLabelAggregation.from_external(data or {})

    def list_transcripts(self, domain_label: str, limit: int = 10,
                         after: Optional[str] = None) -> Page[Transcript]:
        self.require_api_key("fetch conversations")
        payload = self._json("GET", "/v1/conversations/transcripts", "fetch conversations",
                             params={"limit": limit, "domainLabel": domain_label, "after": after})
        raw = _data_list(payload)
        items = [Transcript.from_external(c) for c in raw]
        return Page(items=items, has_more=resolve_has_more(payload, raw, limit),
                    last_id=resolve_last_id(payload, items, lambda t: t.id))


def _data_list(payload: Any) -> List[Dict[str, Any]]:
    """List endpoints answer with either a bare array or {"data": [...]}."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    log.warning(f"Unexpected list response format: {str(payload)[:200]}")
    return []


def _error_message(response: requests.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or None
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(body.get("error"), dict):
            message = message or body["error"].get("message")
        return message
    return None
