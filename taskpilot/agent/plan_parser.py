"""
Plan Decoder

Turns raw model output into a list of step dicts. Models wrap JSON in
prose, fences and Python-isms, so decoding tries a fixed sequence of
strategies and reports which one worked.

Pure functions only: no I/O, no logging.
"""

from dataclasses import dataclass, field
import json
import re
from typing import Optional

from .models import Step


FENCE_RE = re.compile(r"```(?:json|JSON|javascript|js|python)?\s*\n?([\s\S]*?)\n?```")

STRATEGIES = ("direct", "fenced", "bracket", "repair")

PY_LITERALS = {"True": "true", "False": "false", "None": "null"}
JSON_LITERALS = {"true", "false", "null"}


@dataclass
class PlanDecodeResult:
    """Outcome of decode_plan: steps on success, error otherwise."""
    steps: Optional[list] = None
    strategy: Optional[str] = None
    error: Optional[str] = None
    attempts: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.steps is not None


def _as_steps(value) -> Optional[list]:
    """Accept a list of objects, or an object holding one under 'steps'."""
    if isinstance(value, dict) and isinstance(value.get("steps"), list):
        value = value["steps"]
    if isinstance(value, list) and all(isinstance(item, dict) for item in value):
        return value
    return None


def _try_json(text: Optional[str]) -> Optional[list]:
    if not text:
        return None
    try:
        return _as_steps(json.loads(text))
    except (ValueError, RecursionError):
        return None


def _bracket_slice(text: str) -> Optional[str]:
    start, end = text.find("["), text.rfind("]")
    if start != -1 and end > start:
        return text[start:end + 1]
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return None


def _fenced(text: str) -> Optional[str]:
    match = FENCE_RE.search(text)
    return match.group(1).strip() if match else None


def _read_string(text: str, i: int, quote: str) -> tuple[str, int]:
    """Read a quoted string starting at text[i]; return (json_string, next_index)."""
    chars = []
    i += 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            if quote == "'" and nxt == "'":
                chars.append("'")
            else:
                chars.append(ch + nxt)
            i += 2
            continue
        if ch == quote:
            i += 1
            break
        if ch == "\n":
            chars.append("\\n")
        else:
            chars.append(ch)
        i += 1

    body = "".join(chars)
    if quote == "'":
        # Escape double quotes that were literal inside a single-quoted string
        body = re.sub(r'(?<!\\)"', r'\\"', body)
    return '"' + body + '"', i


def repair_json(text: str) -> str:
    """
    Best-effort rewrite of JSON-like text into strict JSON.

    Drops trailing commas and // comments, converts single-quoted strings,
    quotes bare object keys and maps Python literals.
    """
    out = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if ch in ('"', "'"):
            literal, i = _read_string(text, i, ch)
            out.append(literal)
            continue

        if ch == "/" and text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline == -1 else newline
            continue

        if ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "]}":
                i += 1
                continue
            out.append(ch)
            i += 1
            continue

        if ch.isalpha() or ch in "_$":
            j = i
            while j < n and (text[j].isalnum() or text[j] in "_$-"):
                j += 1
            word = text[i:j]
            k = j
            while k < n and text[k].isspace():
                k += 1
            if k < n and text[k] == ":":
                out.append(json.dumps(word))
            elif word in PY_LITERALS:
                out.append(PY_LITERALS[word])
            else:
                out.append(word)
            i = j
            continue

        out.append(ch)
        i += 1

    return "".join(out)


def decode_plan(text: str) -> PlanDecodeResult:
    """
    Decode a plan from model output.

    Strategies, in order: direct parse, fenced code block, first/last
    bracket slice, heuristic repair of the best candidate region.
    """
    result = PlanDecodeResult()
    if not text or not text.strip():
        result.error = "empty response"
        return result

    text = text.strip()
    fenced = _fenced(text)
    candidates = {
        "direct": text,
        "fenced": fenced,
        "bracket": _bracket_slice(text),
    }

    for strategy in ("direct", "fenced", "bracket"):
        result.attempts.append(strategy)
        steps = _try_json(candidates[strategy])
        if steps is not None:
            result.steps = steps
            result.strategy = strategy
            return result

    result.attempts.append("repair")
    region = fenced or text
    for candidate in (_bracket_slice(region), region):
        if not candidate:
            continue
        repaired = repair_json(candidate)
        steps = _try_json(repaired)
        if steps is None:
            steps = _try_json(_bracket_slice(repaired))
        if steps is not None:
            result.steps = steps
            result.strategy = "repair"
            return result

    result.error = "no JSON step array found in response"
    return result


def build_steps(raw_steps: list, task_id: str, start_index: int = 0, max_steps: int = None) -> list[Step]:
    """Normalize decoded step dicts into Step records with consecutive indices."""
    if max_steps is not None:
        raw_steps = raw_steps[:max_steps]

    steps = []
    for offset, raw in enumerate(raw_steps):
        index = start_index + offset
        tool = raw.get("tool")
        if isinstance(tool, str):
            tool = tool.strip() or None
            if tool and tool.lower() in ("null", "none"):
                tool = None
        elif tool is not None:
            tool = None

        args = raw.get("args")
        if args is None:
            args = raw.get("toolArgs", raw.get("params"))
        if not isinstance(args, dict):
            args = {}

        steps.append(Step(
            id=f"{task_id}_s{index}",
            index=index,
            action=str(raw.get("action") or raw.get("description") or f"Step {index + 1}"),
            tool=tool,
            args=args,
        ))
    return steps
