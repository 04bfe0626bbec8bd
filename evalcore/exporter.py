"""
Annotation export to .xlsx or .jsonl.
"""

import io
import json
from typing import Iterable, List, Tuple

from openpyxl import Workbook

from evalcore.client import EvalServiceClient, InvalidRequestError
from evalcore.logging_config import DebugLogger
from evalcore.models import Annotation, RunContext
from evalcore.pagination import collect_all

log = DebugLogger("exporter")

EXPORT_COLUMNS = [
    "conversationId",
    "agent",
    "handover_reason_l1",
    "handover_reason_l2",
    "label_selection_reason",
    "conversation",
    "createdAt",
]

EXPORT_FORMATS = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "jsonl": "application/jsonl",
}


def annotations_to_xlsx(annotations: Iterable[Annotation]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "annotations"
    sheet.append(EXPORT_COLUMNS)
    for annotation in annotations:
        row = annotation.export_row()
        sheet.append([row[column] for column in EXPORT_COLUMNS])

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def annotations_to_jsonl(annotations: Iterable[Annotation]) -> bytes:
    lines = [
        json.dumps(annotation.export_row(), ensure_ascii=False, separators=(",", ":"))
        for annotation in annotations
    ]
    return ("\n".join(lines) + "\n").encode("utf-8") if lines else b""


def fetch_all_annotations(client: EvalServiceClient, context: RunContext,
                          page_size: int = 100) -> List[Annotation]:
    return collect_all(
        lambda after, limit: client.list_annotations(context, after=after, limit=limit),
        page_size,
    )


def export_annotations(client: EvalServiceClient, context: RunContext,
                       fmt: str = "xlsx") -> Tuple[bytes, str, str]:
    """Returns (content, media type, filename)."""
    if fmt not in EXPORT_FORMATS:
        raise InvalidRequestError(f"Unsupported export format: {fmt}")

    annotations = fetch_all_annotations(client, context)
    log.info(f"Exporting {len(annotations)} annotations for run {context.run_id} as {fmt}")

    if fmt == "xlsx":
        content = annotations_to_xlsx(annotations)
    else:
        content = annotations_to_jsonl(annotations)
    return content, EXPORT_FORMATS[fmt], f"annotations_{context.run_id}.{fmt}"
