import json
import logging
import re
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json_block(text: str, kind: str = "object") -> Optional[str]:
    """Returns the outermost JSON object ("object") or array ("array") found in a model reply."""
    if not text:
        return None
    content = text.strip()
    fenced = _FENCE.search(content)
    if fenced:
        content = fenced.group(1).strip()

    open_char, close_char = ("[", "]") if kind == "array" else ("{", "}")
    start = content.find(open_char)
    end = content.rfind(close_char)
    if start == -1 or end <= start:
        return None
    return content[start:end + 1]


def parse_or_default(
    raw: str,
    validator: Callable[[Any], T],
    default_factory: Callable[[str], T],
    kind: str = "object",
    label: str = "response",
) -> T:
    """Parses a JSON block out of `raw` and validates it.

    `validator` receives the decoded JSON and either returns the typed value or raises.
    Any failure along the way returns `default_factory(raw)` instead of propagating.
    """
    block = extract_json_block(raw, kind=kind)
    if block is None:
        logger.warning(f"[parse_or_default] No JSON {kind} found in {label}; using defaults.")
        return default_factory(raw)
    try:
        return validator(json.loads(block))
    except Exception as e:
        logger.warning(f"[parse_or_default] Failed to parse {label}: {e}; using defaults.")
        return default_factory(raw)
