"""
Conversation transcript parsing for annotation review.

Annotation records carry the conversation as a single string. Depending on
where the dataset came from it can be a JSON array of turns, a Python repr of
a list of dicts, or plain text. parse_conversation() tries a fixed sequence of
strategies and renders whatever it recovers as "**role**: content" paragraphs.
Anything it cannot read is handed back untouched.
"""

import ast
import html
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from evalcore.logging_config import get_logger

log = get_logger("conversation")

# 'role': '...', 'content': '...' with backslash escapes allowed inside values
_QUOTED = r"'((?:[^'\\]|\\.)*)'"
SINGLE_QUOTED_PAIR_RE = re.compile(
    r"'role'\s*:\s*" + _QUOTED + r"\s*,\s*'content'\s*:\s*" + _QUOTED,
    re.DOTALL,
)
ROLE_KEY_RE = re.compile(r"""['"]role['"]\s*:""")
# 'key': 'value' where the value closes right before , or }
SINGLE_QUOTED_ITEM_RE = re.compile(r"'(\w+)'\s*:\s*'(.*?)'(?=\s*[,}])", re.DOTALL)
ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)
BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}


@dataclass(frozen=True)
class Turn:
    role: str
    content: str

    def render(self) -> str:
        return f"**{self.role}**: {self.content}"


@dataclass(frozen=True)
class ParsedConversation:
    """
    Outcome of parsing a conversation string.

    turns is None when no strategy could read the input ("unparsed"); the
    original text is kept so callers can always fall back to it.
    """
    original: str
    turns: Optional[Tuple[Turn, ...]] = None
    strategy: Optional[str] = None

    @property
    def parsed(self) -> bool:
        return self.turns is not None

    def render(self) -> str:
        if self.turns is None:
            return self.original
        return "\n\n".join(turn.render() for turn in self.turns)


def _unescape(value: str) -> str:
    return ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), value)


def _turns_from_objects(data: Any) -> Optional[List[Turn]]:
    """Accept only a list of dicts that each carry a role."""
    if not isinstance(data, list) or not data:
        return None
    turns = []
    for entry in data:
        if not isinstance(entry, dict) or "role" not in entry:
            return None
        content = entry.get("content")
        turns.append(Turn(role=str(entry["role"]), content="" if content is None else str(content)))
    return turns


def _turns_from_json(text: str) -> Optional[List[Turn]]:
    try:
        return _turns_from_objects(json.loads(text))
    except (ValueError, RecursionError):
        return None


def extract_single_quoted_pairs(text: str) -> Optional[List[Turn]]:
    """[{'role': 'user', 'content': '...'}] via regex."""
    matches = SINGLE_QUOTED_PAIR_RE.findall(text)
    if not matches:
        return None
    # A turn quoted differently would be silently dropped; let a later strategy handle it
    if len(matches) != len(ROLE_KEY_RE.findall(text)):
        return None
    return [Turn(role=_unescape(role), content=_unescape(content)) for role, content in matches]


def parse_json_array(text: str) -> Optional[List[Turn]]:
    return _turns_from_json(text)


def parse_python_literal(text: str) -> Optional[List[Turn]]:
    try:
        return _turns_from_objects(ast.literal_eval(text))
    except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
        return None


def repair_quotes(text: str) -> Optional[List[Turn]]:
    """Rewrite single-quoted keys/values as JSON strings and parse again."""
    # \' is not a JSON escape
    turns = _turns_from_json(text.replace("\\'", "'"))
    if turns is not None:
        return turns

    fixed = re.sub(r"\[\s*\{", "[{", text)
    fixed = re.sub(r"\}\s*\]", "}]", fixed)
    fixed = re.sub(r"\}\s*,\s*\{", "},{", fixed)
    fixed = SINGLE_QUOTED_ITEM_RE.sub(
        lambda m: f"{json.dumps(m.group(1))}: {json.dumps(_unescape(m.group(2)))}",
        fixed,
    )
    return _turns_from_json(fixed)


Strategy = Tuple[str, Callable[[str], Optional[List[Turn]]]]

STRATEGIES: List[Strategy] = [
    ("single_quoted_pairs", extract_single_quoted_pairs),
    ("json", parse_json_array),
    ("python_literal", parse_python_literal),
    ("quote_repair", repair_quotes),
]


def looks_like_list(text: str) -> bool:
    stripped = text.strip()
    return stripped.startswith("[") and stripped.endswith("]")


def parse_turns(text: str, strategies: Optional[List[Strategy]] = None) -> ParsedConversation:
    """Run the strategies in order; the first one that yields turns wins."""
    if not isinstance(text, str) or not looks_like_list(text):
        return ParsedConversation(original=text)

    candidate = text.strip()
    for name, strategy in strategies or STRATEGIES:
        try:
            turns = strategy(candidate)
        except Exception as e:
            # A strategy that blows up counts as no result
            log.debug(f"Strategy '{name}' failed: {type(e).__name__}: {e}")
            continue
        if turns:
            log.debug(f"Parsed {len(turns)} turns with strategy '{name}'")
            return ParsedConversation(original=text, turns=tuple(turns), strategy=name)

    log.warning(f"All conversation parsing attempts failed: {text[:120]!r}")
    return ParsedConversation(original=text)


def parse_conversation(text: str) -> str:
    """
    Render a conversation string as "**role**: content" paragraphs.

    Returns the input unchanged when it does not look like a list of turns or
    when none of the strategies can read it. Never raises.
    """
    return parse_turns(text).render()


def render_markdown_bold(text: str) -> str:
    """Minimal markdown for the review view: **bold** and paragraph breaks."""
    escaped = html.escape(text, quote=False)
    escaped = BOLD_RE.sub(r"<strong>\1</strong>", escaped)
    return escaped.replace("\n\n", "<br /><br />")
