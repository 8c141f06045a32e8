from __future__ import annotations

import ast
import json
import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple


NUMBER_RE = re.compile(r"(?P<sign>[▲△])?(?P<num>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)")


def now_iso() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


def iso_from_epoch_ms(value: Any) -> str:
    ms = to_float(value)
    if ms is None:
        return ""
    try:
        stamp = datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return ""
    return stamp.replace(tzinfo=None).isoformat() + "Z"


def normalize_ws(text: str) -> str:
    return re.sub(r"\s+", " ", str(text or "")).strip()


def extract_widest_block(text: str, opening: str = "{", closing: str = "}") -> Tuple[str, int, int]:
    """Return (block, start, end) spanning the first `opening` to the last `closing`.

    Greedy on purpose: nested objects and prose with stray braces inside the
    payload stay in one span. Returns ("", -1, -1) when no such span exists.
    """
    if not text:
        return "", -1, -1
    start = text.find(opening)
    if start == -1:
        return "", -1, -1
    end = text.rfind(closing)
    if end < start:
        return "", -1, -1
    return text[start : end + 1], start, end + 1


def normalize_jsonish(raw: str) -> str:
    text = str(raw or "")
    if not text:
        return text
    text = text.replace("“", '"').replace("”", '"').replace("‘", "'").replace("’", "'")
    # Full-width punctuation the model sometimes leaks between tokens.
    text = text.replace("：", ":").replace("，", ",")
    text = re.sub(r",\s*([\]}])", r"\1", text)
    return text


def parse_json_any(text: str) -> Any:
    src = str(text or "").strip()
    if not src:
        return None
    for trial in [src, normalize_jsonish(src)]:
        try:
            return json.loads(trial)
        except (ValueError, RecursionError):
            try:
                return ast.literal_eval(trial)
            except (ValueError, SyntaxError, MemoryError, RecursionError, TypeError):
                continue
    return None


def to_float(val: Any) -> Optional[float]:
    if isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        return float(val)
    text = normalize_ws(str(val or ""))
    if not text:
        return None
    m = NUMBER_RE.search(text.replace(",", ""))
    if not m:
        return None
    # ▲ and △ mark negative amounts in Japanese budget tables.
    sign = "-" if m.group("sign") else ""
    try:
        return float(sign + m.group("num"))
    except ValueError:
        return None

