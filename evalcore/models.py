"""
Records exchanged with the external evaluation service.

Each record knows how to read itself from the service's JSON
(from_external) and how to present itself to the dashboard (to_dict).
Field names on the service side are fixed by that service and must not be
renamed: report_url, annotationAttributes, testing_criteria, ...
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

DEFAULT_TEMPLATE = "handover-taxonomy"
TERMINAL_RUN_STATUSES = ("completed", "failed")
CONFIDENCE_SCORES = {"HIGH": 0.9, "MEDIUM": 0.5, "LOW": 0.1}
BYTES_PER_ROW_ESTIMATE = 500


def epoch_to_iso(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def criteria_id_from_report_url(report_url: Optional[str]) -> Optional[str]:
    """report_url looks like database://<run>/<test criteria id>."""
    if not report_url:
        return None
    return report_url.rstrip("/").split("/")[-1] or None


# ============================================================================
# Datasets & evals
# ============================================================================

@dataclass
class Dataset:
    id: str
    file_name: str
    row_count: int
    language: str
    created_at: Optional[str]
    status: str  # processing | ready

    @classmethod
    def from_external(cls, data: Dict[str, Any]) -> "Dataset":
        # Real row count is only known once the content is loaded
        return cls(
            id=data.get("id", ""),
            file_name=data.get("filename", ""),
            row_count=int(data.get("bytes") or 0) // BYTES_PER_ROW_ESTIMATE,
            language="English (translated)",
            created_at=epoch_to_iso(data.get("created_at")),
            status="ready" if data.get("status") == "processed" else "processing",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fileName": self.file_name,
            "rowCount": self.row_count,
            "language": self.language,
            "createdAt": self.created_at,
            "status": self.status,
        }


@dataclass
class Eval:
    id: str
    name: str
    model: str
    template: str = DEFAULT_TEMPLATE
    dataset_id: str = ""
    variable_mapping: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[str] = None
    testing_criteria: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_external(cls, data: Dict[str, Any]) -> "Eval":
        criteria = data.get("testing_criteria") or []
        model = (criteria[0].get("model") if criteria else None) or "unknown"
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            model=model,
            created_at=epoch_to_iso(data.get("created_at")),
            testing_criteria=criteria,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "model": self.model,
            "template": self.template,
            "datasetId": self.dataset_id,
            "variableMapping": self.variable_mapping,
            "createdAt": self.created_at,
            "testing_criteria": self.testing_criteria,
        }


def format_variable_mapping(variable_mapping: Dict[str, str]) -> str:
    """{"a": "{{item.a}}"} -> "a: {{item.a}}" (comma separated)."""
    return ", ".join(f"{key}: {value}" for key, value in variable_mapping.items())


def build_eval_payload(name: str, model: str, prompt_text: str,
                       variable_mapping: Dict[str, str]) -> Dict[str, Any]:
    return {
        "name": name,
        "data_source_config": {"type": "stored_completions"},
        "testing_criteria": [
            {
                "name": "Handover taxonomy Annotator",
                "type": "annotate_model",
                "model": model,
                "input": [
                    {"role": "developer", "content": prompt_text},
                    {"role": "user", "content": format_variable_mapping(variable_mapping)},
                ],
            }
        ],
    }


def build_run_payload(name: str, dataset_id: str) -> Dict[str, Any]:
    return {
        "name": name,
        "data_source": {
            "type": "stored_completions",
            "source": {"type": "file_id", "id": dataset_id},
        },
    }


# ============================================================================
# Runs
# ============================================================================

@dataclass
class RunDetails:
    id: str
    eval_id: str
    name: str
    status: str  # in_progress | completed | failed
    created_at: Optional[float] = None
    report_url: str = ""
    result_counts: Optional[Dict[str, int]] = None
    per_testing_criteria_results: Optional[List[Dict[str, Any]]] = None
    per_model_usage: Any = None
    data_source: Dict[str, Any] = field(default_factory=dict)
    model: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    object: str = "eval.run"

    @classmethod
    def from_external(cls, data: Dict[str, Any]) -> "RunDetails":
        return cls(
            id=data.get("id", ""),
            eval_id=data.get("eval_id", ""),
            name=data.get("name", ""),
            status=data.get("status", "in_progress"),
            created_at=data.get("created_at"),
            report_url=data.get("report_url") or "",
            result_counts=data.get("result_counts"),
            per_testing_criteria_results=data.get("per_testing_criteria_results"),
            per_model_usage=data.get("per_model_usage"),
            data_source=data.get("data_source") or {},
            model=data.get("model"),
            metadata=data.get("metadata") or {},
            error=data.get("error"),
            object=data.get("object", "eval.run"),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    @property
    def test_criteria_id(self) -> Optional[str]:
        return criteria_id_from_report_url(self.report_url)

    def summary(self) -> str:
        counts = self.result_counts or {}
        return f"{counts.get('total', 0)} total, {counts.get('passed', 0)} passed"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["terminal"] = self.is_terminal
        data["test_criteria_id"] = self.test_criteria_id
        return data


# ============================================================================
# Annotations & aggregation
# ============================================================================

@dataclass
class Annotation:
    id: str
    conversation_id: Any
    handover_reason_l1: str
    handover_reason_l2: str
    label_selection_reason: str
    conversation: str
    agent: Optional[str] = None
    created_at: Optional[float] = None

    @classmethod
    def from_external(cls, data: Dict[str, Any]) -> "Annotation":
        attributes = data.get("annotationAttributes") or {}
        return cls(
            id=data.get("id", ""),
            conversation_id=attributes.get("conversationId"),
            handover_reason_l1=attributes.get("handover_reason_l1", ""),
            handover_reason_l2=attributes.get("handover_reason_l2", ""),
            label_selection_reason=attributes.get("label_selection_reason", ""),
            conversation=attributes.get("conversation", ""),
            agent=attributes.get("agent"),
            created_at=data.get("createdAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "agent": self.agent,
            "handoverReasonL1": self.handover_reason_l1,
            "handoverReasonL2": self.handover_reason_l2,
            "labelSelectionReason": self.label_selection_reason,
            "conversation": self.conversation,
            "createdAt": self.created_at,
        }

    def export_row(self) -> Dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "agent": self.agent or "",
            "handover_reason_l1": self.handover_reason_l1,
            "handover_reason_l2": self.handover_reason_l2,
            "label_selection_reason": self.label_selection_reason,
            "conversation": self.conversation,
            "createdAt": self.created_at,
        }


def build_annotation_update(handover_reason_l1: Optional[str] = None,
                            handover_reason_l2: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Body for the annotation update call, or None when there is nothing to send."""
    attributes = {}
    if handover_reason_l1:
        attributes["handover_reason_l1"] = handover_reason_l1
    if handover_reason_l2:
        attributes["handover_reason_l2"] = handover_reason_l2
    if not attributes:
        return None
    return {"annotationAttributes": attributes}


@dataclass
class Level2Aggregation:
    name: str
    count: int


@dataclass
class Level1Aggregation:
    name: str
    count: int
    level2: List[Level2Aggregation] = field(default_factory=list)


@dataclass
class AggregationData:
    eval_id: str
    run_id: str
    test_id: str
    annotations_count: int
    aggregations: List[Level1Aggregation] = field(default_factory=list)

    @classmethod
    def from_external(cls, data: Dict[str, Any]) -> "AggregationData":
        return cls(
            eval_id=data.get("evalId", ""),
            run_id=data.get("runId", ""),
            test_id=data.get("testId", ""),
            annotations_count=int(data.get("annotationsCount") or 0),
            aggregations=[
                Level1Aggregation(
                    name=l1.get("name", ""),
                    count=int(l1.get("count") or 0),
                    level2=[
                        Level2Aggregation(name=l2.get("name", ""), count=int(l2.get("count") or 0))
                        for l2 in l1.get("level2") or []
                    ],
                )
                for l1 in data.get("aggregations") or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evalId": self.eval_id,
            "runId": self.run_id,
            "testId": self.test_id,
            "annotationsCount": self.annotations_count,
            "aggregations": [asdict(a) for a in self.aggregations],
        }


# ============================================================================
# Labels
# ============================================================================

@dataclass
class GenericLabel:
    path: str
    count: int


@dataclass
class DomainLabelRule:
    id: str
    label: str
    bucket_path: str
    definition: str = ""
    reason: str = ""
    version: str = ""
    author: str = ""
    created_at: str = ""

    @classmethod
    def from_external(cls, data: Dict[str, Any]) -> "DomainLabelRule":
        return cls(
            id=data.get("id", ""),
            label=data.get("label", ""),
            bucket_path=data.get("bucketPath", ""),
            definition=data.get("definition", ""),
            reason=data.get("reason", ""),
            version=data.get("version", ""),
            author=data.get("author", ""),
            created_at=data.get("createdAt", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "bucketPath": self.bucket_path,
            "definition": self.definition,
            "reason": self.reason,
            "version": self.version,
            "author": self.author,
            "createdAt": self.created_at,
        }


@dataclass
class DomainLabelSuggestion:
    suggestion: str
    confidence: float
    examples: List[str] = field(default_factory=list)
    definition: str = ""
    reason: str = ""
    cluster_id: str = ""
    original_label: Dict[str, Any] = field(default_factory=dict)
    original_cluster: Dict[str, Any] = field(default_factory=dict)
    existing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suggestion": self.suggestion,
            "confidence": self.confidence,
            "examples": self.examples,
            "definition": self.definition,
            "reason": self.reason,
            "clusterId": self.cluster_id,
            "originalLabel": self.original_label,
            "originalCluster": self.original_cluster,
            "existing": self.existing,
        }


def confidence_score(value: Any) -> float:
    return CONFIDENCE_SCORES.get(str(value).upper(), 0.5) if value is not None else 0.5


def parse_label_suggestions(response: Any) -> List[DomainLabelSuggestion]:
    """
    Flatten the suggest response.

    The service answers with {cluster_id: {cluster, suggestedLabels,
    exampleIds}}; every suggested label becomes one suggestion that keeps the
    raw label and cluster for the accept call.
    """
    suggestions: List[DomainLabelSuggestion] = []
    if not isinstance(response, dict):
        return suggestions

    for cluster_id, cluster in response.items():
        if not isinstance(cluster, dict):
            continue
        labels = cluster.get("suggestedLabels")
        if not isinstance(labels, list):
            continue
        examples = cluster.get("exampleIds") if isinstance(cluster.get("exampleIds"), list) else []
        raw_cluster = dict(cluster.get("cluster") or {})
        raw_cluster["id"] = raw_cluster.get("id") or cluster_id

        for label in labels:
            suggestions.append(DomainLabelSuggestion(
                suggestion=label.get("path") or "Unknown label",
                confidence=confidence_score(label.get("confidence")),
                examples=list(examples),
                definition=label.get("definition") or "",
                reason=label.get("reason") or "",
                cluster_id=str(cluster_id),
                original_label=label,
                original_cluster=raw_cluster,
                existing=bool(label.get("existing", False)),
            ))
    return suggestions


@dataclass
class DomainLabelDateCount:
    day: str
    count: int


@dataclass
class DomainLabelBucket:
    path: str
    count: int
    date_wise: List[DomainLabelDateCount] = field(default_factory=list)


@dataclass
class DomainLabelCategory:
    path: str
    count: int
    buckets: List[DomainLabelBucket] = field(default_factory=list)
    date_wise: List[DomainLabelDateCount] = field(default_factory=list)


def _date_counts(entries) -> List[DomainLabelDateCount]:
    return [DomainLabelDateCount(day=e.get("day", ""), count=int(e.get("count") or 0)) for e in entries or []]


@dataclass
class DomainLabelAggregation:
    count: int
    domains: List[DomainLabelCategory] = field(default_factory=list)

    @classmethod
    def from_external(cls, data: Dict[str, Any]) -> "DomainLabelAggregation":
        return cls(
            count=int(data.get("count") or 0),
            domains=[
                DomainLabelCategory(
                    path=d.get("path", ""),
                    count=int(d.get("count") or 0),
                    buckets=[
                        DomainLabelBucket(
                            path=b.get("path", ""),
                            count=int(b.get("count") or 0),
                            date_wise=_date_counts(b.get("dateWise")),
                        )
                        for b in d.get("buckets") or []
                    ],
                    date_wise=_date_counts(d.get("dateWise")),
                )
                for d in data.get("domains") or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        def dates(items):
            return [asdict(i) for i in items]

        return {
            "count": self.count,
            "domains": [
                {
                    "path": d.path,
                    "count": d.count,
                    "buckets": [
                        {"path": b.path, "count": b.count, "dateWise": dates(b.date_wise)}
                        for b in d.buckets
                    ],
                    "dateWise": dates(d.date_wise),
                }
                for d in self.domains
            ],
        }


# ============================================================================
# Transcripts
# ============================================================================

@dataclass
class TranscriptMessage:
    role: str
    content: str
    timestamp: Optional[str] = None


@dataclass
class Transcript:
    id: str
    messages: List[TranscriptMessage] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_external(cls, data: Dict[str, Any]) -> "Transcript":
        # Service roles are upper case and the body lives under "text"
        return cls(
            id=data.get("conversationId") or "",
            messages=[
                TranscriptMessage(
                    role=(m.get("role") or "").lower(),
                    content=m.get("text") or "",
                    timestamp=m.get("timestamp"),
                )
                for m in data.get("messages") or []
            ],
            metadata={
                "created_at": data.get("createdAt"),
                "model": data.get("model"),
                "isGenericLabelAvailable": data.get("isGenericLabelAvailable"),
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RunContext:
    """The eval/run/test-criteria triple that scopes annotation calls."""
    eval_id: str
    run_id: str
    test_id: str

    def annotations_path(self) -> str:
        return f"/v1/evals/{self.eval_id}/runs/{self.run_id}/tests/{self.test_id}/annotations"
