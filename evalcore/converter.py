"""
Spreadsheet to JSONL conversion.

Reads the first sheet of an .xlsx workbook and writes one
{"item": {...}} JSON object per row, translating each conversation to
English on the way. Rows without a conversation id are dropped.

Usage:
    stats = convert_workbook("dataset.xlsx", "dataset.jsonl", translator)

    # From an upload (temp files are always cleaned up)
    result = convert_upload(upload.filename, upload_bytes, translator, settings.conversion)
"""

import json
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, TextIO

from openpyxl import load_workbook

from evalcore.config import ConversionConfig
from evalcore.logging_config import DebugLogger
from evalcore.translation import Translator, might_not_be_english, translate_or_original

log = DebugLogger("converter")

SUPPORTED_EXTENSIONS = (".xlsx",)

# Accepted header spellings, first match wins
ID_KEYS = ("conversationId", "conversation_id")
AGENT_KEYS = ("Agent", "agent")
INTENT_KEYS = ("source_intent", "sourceIntent")


class ConversionError(Exception):
    """The workbook could not be converted."""


class UnsupportedFormatError(ValueError):
    """The upload is not a spreadsheet we can read."""


def is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _first(row: Dict[str, Any], keys: Iterable[str], default: Any = "") -> Any:
    for key in keys:
        value = row.get(key)
        if not is_missing(value):
            return value
    return default


def _cell_to_json(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def iso_now() -> str:
    """UTC timestamp in the same shape as JavaScript's toISOString()."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass
class DatasetRow:
    conversation_id: Any
    conversation: str
    agent: Any = ""
    timestamp: Any = ""
    source_intent: Any = ""

    @classmethod
    def from_mapping(cls, row: Dict[str, Any], default_timestamp: str) -> Optional["DatasetRow"]:
        """Build a row from header->value cells, or None when it has no id."""
        conversation_id = _first(row, ID_KEYS, default=None)
        if conversation_id is None:
            return None

        conversation = row.get("conversation")
        return cls(
            conversation_id=_cell_to_json(conversation_id),
            conversation="" if is_missing(conversation) else str(conversation),
            agent=_cell_to_json(_first(row, AGENT_KEYS)),
            timestamp=_cell_to_json(_first(row, ("timestamp",), default=default_timestamp)),
            source_intent=_cell_to_json(_first(row, INTENT_KEYS)),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "item": {
                "conversationId": self.conversation_id,
                "conversation": self.conversation,
                "Agent": self.agent,
                "timestamp": self.timestamp,
                "source_intent": self.source_intent,
            }
        }

    def to_json_line(self) -> str:
        return json.dumps(self.to_record(), ensure_ascii=False, separators=(",", ":")) + "\n"


@dataclass
class ConversionStats:
    rows_read: int = 0
    rows_written: int = 0
    rows_skipped: int = 0


@dataclass
class ConversionResult:
    filename: str
    content: bytes
    stats: ConversionStats


def check_extension(filename: str) -> None:
    if not filename or Path(filename).suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormatError(f"Only {', '.join(SUPPORTED_EXTENSIONS)} files are supported")


def output_filename(filename: str) -> str:
    return f"{Path(filename).stem}.jsonl"


def read_workbook_rows(path) -> List[Dict[str, Any]]:
    """
    Read the first sheet into dicts keyed by the header row.

    Empty rows are skipped and empty cells are left out of the mapping.
    """
    try:
        workbook = load_workbook(filename=str(path), read_only=True, data_only=True)
    except Exception as e:
        raise ConversionError(f"Error processing Excel file: {e}") from e

    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        keys = [None if is_missing(h) else str(h).strip() for h in header]

        records = []
        for values in rows:
            record = {
                key: value
                for key, value in zip(keys, values)
                if key is not None and value is not None
            }
            if record:
                records.append(record)
        return records
    except Exception as e:
        # read_only sheets are parsed lazily, so broken XML surfaces here
        raise ConversionError(f"Error processing Excel file: {e}") from e
    finally:
        workbook.close()


def _translate_all(texts: List[str], translator: Translator, workers: int,
                   skip_ascii: bool, target_lang: str) -> List[str]:
    def translate(text: str) -> str:
        if not text or (skip_ascii and not might_not_be_english(text)):
            return text
        return translate_or_original(translator, text, target_lang)

    if workers <= 1:
        return [translate(text) for text in texts]

    # map() yields in submission order, so output order matches input order
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(translate, texts))


def write_jsonl(
    rows: List[Dict[str, Any]],
    out: TextIO,
    translator: Translator,
    default_timestamp: Optional[str] = None,
    workers: int = 1,
    skip_ascii: bool = False,
    target_lang: str = "en",
) -> ConversionStats:
    """Convert row mappings and write them to out as JSON lines."""
    default_timestamp = default_timestamp or iso_now()
    stats = ConversionStats(rows_read=len(rows))

    dataset_rows = []
    for i, row in enumerate(rows, start=1):
        dataset_row = DatasetRow.from_mapping(row, default_timestamp)
        if dataset_row is None:
            log.info(f"Skipping row {i} - missing conversationId")
            stats.rows_skipped += 1
            continue
        dataset_rows.append(dataset_row)

    translations = _translate_all(
        [r.conversation for r in dataset_rows], translator, workers, skip_ascii, target_lang
    )
    for dataset_row, translated in zip(dataset_rows, translations):
        dataset_row.conversation = translated
        out.write(dataset_row.to_json_line())
        stats.rows_written += 1

    log.convert("written", rows=stats.rows_written, skipped=stats.rows_skipped)
    return stats


def convert_workbook(
    source,
    destination,
    translator: Translator,
    default_timestamp: Optional[str] = None,
    workers: int = 1,
    skip_ascii: bool = False,
    target_lang: str = "en",
) -> ConversionStats:
    """Convert an .xlsx file on disk to a .jsonl file on disk."""
    rows = read_workbook_rows(source)
    log.info(f"Parsed {len(rows)} rows from Excel file")

    with open(destination, "w", encoding="utf-8", newline="\n") as out:
        stats = write_jsonl(
            rows, out, translator,
            default_timestamp=default_timestamp,
            workers=workers,
            skip_ascii=skip_ascii,
            target_lang=target_lang,
        )

    log.info(f"JSONL file created with {stats.rows_written} rows")
    return stats


def _temp_path(directory: Path, suffix: str) -> Path:
    fd, name = tempfile.mkstemp(dir=str(directory), suffix=suffix)
    os.close(fd)
    return Path(name)


def convert_upload(
    filename: str,
    content: bytes,
    translator: Translator,
    config: ConversionConfig,
    target_lang: str = "en",
    default_timestamp: Optional[str] = None,
) -> ConversionResult:
    """
    Convert uploaded workbook bytes and return the JSONL bytes.

    Both the saved upload and the generated output live in the temp
    directory only for the duration of this call.
    """
    check_extension(filename)

    temp_dir = config.temp_path()
    temp_dir.mkdir(parents=True, exist_ok=True)

    temp_files: List[Path] = []
    try:
        excel_path = _temp_path(temp_dir, ".xlsx")
        temp_files.append(excel_path)
        jsonl_path = _temp_path(temp_dir, ".jsonl")
        temp_files.append(jsonl_path)

        excel_path.write_bytes(content)
        log.convert("saved", path=excel_path.name, bytes=len(content))

        stats = convert_workbook(
            excel_path, jsonl_path, translator,
            default_timestamp=default_timestamp,
            workers=config.translate_workers,
            skip_ascii=config.skip_ascii,
            target_lang=target_lang,
        )
        data = jsonl_path.read_bytes()
        log.convert("read", bytes=len(data))
    finally:
        for path in temp_files:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
        log.convert("cleanup", files=",".join(p.name for p in temp_files))

    return ConversionResult(filename=output_filename(filename), content=data, stats=stats)
