"""
evaldash core - dataset conversion and evaluation-service plumbing.

Everything the dashboard needs that is not UI: turning spreadsheets into
JSONL datasets, talking to the external evaluation service, keeping the
eval/run/test ids of a review session together, and rendering stored
conversation strings for review.

Public API:
    Conversion:
        convert_workbook, convert_upload: .xlsx -> JSONL
        build_translator, translate_or_original: English translation step

    Review:
        parse_conversation: conversation string -> "**role**: content"

    Evaluation service:
        EvalServiceClient: files, evals, runs, annotations, labels
        EvalSession: eval/run/test-criteria linkage
        RunMonitor: poll a run until it is terminal

    Configuration:
        Settings, get_settings
"""

__version__ = "0.3.0"

from evalcore.config import Settings, get_settings
from evalcore.conversation import parse_conversation, render_markdown_bold
from evalcore.converter import ConversionError, UnsupportedFormatError, convert_upload, convert_workbook
from evalcore.translation import TranslationError, build_translator, translate_or_original
from evalcore.client import EvalServiceClient, ExternalServiceError, MissingApiKeyError
from evalcore.session import EvalSession, SessionError, SessionStore
from evalcore.polling import RunMonitor

__all__ = [
    "Settings",
    "get_settings",
    "parse_conversation",
    "render_markdown_bold",
    "ConversionError",
    "UnsupportedFormatError",
    "convert_upload",
    "convert_workbook",
    "TranslationError",
    "build_translator",
    "translate_or_original",
    "EvalServiceClient",
    "ExternalServiceError",
    "MissingApiKeyError",
    "EvalSession",
    "SessionError",
    "SessionStore",
    "RunMonitor",
]
