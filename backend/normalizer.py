"""
Coerce raw planning-agent output into a canonical SchedulePlan dict.

The agent is non-deterministic: the same request can come back as a dict, a
JSON string, JSON wrapped in markdown fences, JSON buried in prose, or a dict
whose `semesters` field is itself a JSON string or markdown outline.
normalize_schedule() tries an ordered list of parse strategies (first success
wins), then canonicalizes field types. It never raises.
"""

import json
import math
import re
import sys

from schedule_model import (
    ACADEMIC,
    COOP,
    DEFAULT_DEGREE,
    DEFAULT_TARGET_CREDITS,
    MAX_COURSE_CREDITS,
    MIN_COURSE_CREDITS,
    SEMESTER_STATUSES,
    academic_credit_total,
    course_credits,
    empty_schedule,
)
from semesters import normalize_semester_label


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_SCHOOL_KEY_RE = re.compile(r'\{\s*"school"')
_TRAILING_COMMA_RE = re.compile(r",\s*$")
_BULLET_RE = re.compile(r"^(?:[-•*]\s*|\d+\.\s*)")

# Markdown outline emitted when the agent ignores the JSON instruction:
#   - Fall 2025 (16 credits):
#     - CS 1800: Discrete Structures (4)
#     - General Elective (4)
#   - **Summer 2027: Co-op 1**
_MD_YEAR_HEADER_RE = re.compile(r"^\*\*Year \d+\*\*")
_MD_COOP_RE = re.compile(r"\*\*([A-Za-z/]+\s+\d{4}):\s*Co-op\s*(\d+)\*\*", re.IGNORECASE)
_MD_SEMESTER_RE = re.compile(r"^-\s*([A-Za-z]+\s+(?:[12]\s+)?\d{4})\s*\((\d+)\s*credits?\):", re.IGNORECASE)
_MD_COURSE_RE = re.compile(r"^\s+-\s*([A-Z]{2,5}\s*\d{3,4}[A-Z]?):\s*(.+?)\s*\((\d+)\)")
_MD_GENERIC_RE = re.compile(r"^\s+-\s*([^(]+?)\s*\((\d+)\)\s*$")
_MD_CODE_PREFIX_RE = re.compile(r"^[A-Z]{2,5}\s*\d{3,4}")


# ── Low-level helpers ─────────────────────────────────────────────────────────

def strip_code_fences(text: str) -> str:
    """Return the body of the first ``` fence, or the stripped text if unfenced."""
    stripped = (text or "").strip()
    m = _FENCE_RE.search(stripped)
    if m:
        return m.group(1).strip()
    if stripped.startswith("```"):
        # Unterminated fence: drop the opening line.
        lines = stripped.splitlines()
        return "\n".join(lines[1:]).strip()
    return stripped


def _loads(text: str):
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def scan_balanced_object(text: str, start: int) -> str | None:
    """
    Return the substring of the JSON object that opens at text[start], matching
    braces while skipping string literals. None if the object never closes.
    """
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:idx + 1]
    return None


def _unwrap_answer(value):
    """Agent envelopes look like {"answer": "<json string>"}; peel a few layers."""
    for _ in range(3):
        if not isinstance(value, dict) or "answer" not in value or "semesters" in value:
            return value
        answer = value["answer"]
        if isinstance(answer, str):
            parsed = _loads(strip_code_fences(answer))
            if parsed is None:
                return value
            answer = parsed
        value = answer
    return value


def _has_schedule_shape(value) -> bool:
    return isinstance(value, dict) and bool(value.get("school")) and isinstance(value.get("semesters"), list)


# ── Parse strategies ──────────────────────────────────────────────────────────

def parse_direct_shape(raw):
    """Already a schedule dict: has `school` and a `semesters` list."""
    value = _unwrap_answer(raw)
    return value if _has_schedule_shape(value) else None


def parse_fenced_json(raw):
    """A JSON string, optionally wrapped in markdown code fences."""
    if not isinstance(raw, str):
        return None
    value = _unwrap_answer(_loads(strip_code_fences(raw)))
    return value if _has_schedule_shape(value) else None


def parse_brace_scan(raw):
    """A schedule object embedded in surrounding prose, found by its school key."""
    if not isinstance(raw, str):
        return None
    matches = list(_SCHOOL_KEY_RE.finditer(raw))
    for m in reversed(matches):
        candidate = scan_balanced_object(raw, m.start())
        if candidate is None:
            continue
        value = _unwrap_answer(_loads(candidate))
        if isinstance(value, dict) and "semesters" in value:
            return coerce_schedule_fields(value)
    return None


def parse_field_coercion(raw):
    """A schedule-like dict (or JSON text of one) whose fields are mis-typed."""
    value = raw
    if isinstance(value, str):
        value = _loads(strip_code_fences(value))
        if value is None:
            start = raw.find("{")
            candidate = scan_balanced_object(raw, start) if start != -1 else None
            value = _loads(candidate) if candidate else None
    value = _unwrap_answer(value)
    if not isinstance(value, dict) or "semesters" not in value:
        return None
    coerced = coerce_schedule_fields(value)
    return coerced if isinstance(coerced.get("semesters"), list) else None


PARSE_STRATEGIES = (
    ("direct_shape", parse_direct_shape),
    ("fenced_json", parse_fenced_json),
    ("brace_scan", parse_brace_scan),
    ("field_coercion", parse_field_coercion),
)


# ── Field coercion ────────────────────────────────────────────────────────────

def parse_schedule_markdown(markdown: str) -> list[dict]:
    """Parse the agent's markdown outline into semester dicts."""
    semesters: list[dict] = []
    current = None

    for line in (markdown or "").splitlines():
        if _MD_YEAR_HEADER_RE.match(line.strip()):
            continue

        coop = _MD_COOP_RE.search(line)
        if coop:
            if current:
                semesters.append(current)
                current = None
            semesters.append({
                "term": normalize_semester_label(coop.group(1)),
                "type": COOP,
                "coopNumber": int(coop.group(2)),
            })
            continue

        header = _MD_SEMESTER_RE.match(line)
        if header:
            if current:
                semesters.append(current)
            current = {
                "term": normalize_semester_label(header.group(1)),
                "type": ACADEMIC,
                "courses": [],
                "totalCredits": int(header.group(2)),
            }
            continue

        if current is None:
            continue

        course = _MD_COURSE_RE.match(line)
        if course:
            current["courses"].append({
                "code": course.group(1).strip(),
                "name": course.group(2).strip(),
                "credits": int(course.group(3)),
            })
            continue

        generic = _MD_GENERIC_RE.match(line)
        if generic and not _MD_CODE_PREFIX_RE.match(generic.group(1).strip()):
            current["courses"].append({
                "code": "ELEC",
                "name": generic.group(1).strip(),
                "credits": int(generic.group(2)),
            })

    if current:
        semesters.append(current)

    for semester in semesters:
        if semester["type"] == ACADEMIC and semester["courses"]:
            semester["totalCredits"] = sum(c["credits"] for c in semester["courses"])
    return semesters


def _coerce_semesters_value(value):
    if not isinstance(value, str):
        return value
    trimmed = value.strip()
    if trimmed.startswith("["):
        parsed = _loads(_TRAILING_COMMA_RE.sub("", trimmed))
        if isinstance(parsed, list):
            return parsed
    print("[NORMALIZE] semesters field is not JSON; parsing as markdown outline")
    return parse_schedule_markdown(trimmed)


def coerce_schedule_fields(value: dict) -> dict:
    """Parse stringified `semesters` and per-semester `courses` fields."""
    out = dict(value)
    semesters = _coerce_semesters_value(out.get("semesters"))
    if isinstance(semesters, dict):
        semesters = [semesters]
    if isinstance(semesters, list):
        coerced = []
        for semester in semesters:
            if isinstance(semester, str):
                semester = _loads(semester)
            if not isinstance(semester, dict):
                continue
            semester = dict(semester)
            if isinstance(semester.get("courses"), str):
                parsed = _loads(_TRAILING_COMMA_RE.sub("", semester["courses"].strip()))
                semester["courses"] = parsed if isinstance(parsed, list) else []
            coerced.append(semester)
        semesters = coerced
    out["semesters"] = semesters
    return out


def normalize_warnings(warnings) -> list[str]:
    """Warnings may arrive as a list, a JSON array string, or a bulleted block."""
    if not warnings:
        return []
    if isinstance(warnings, list):
        return [str(w) for w in warnings if w is not None and str(w).strip()]
    text = str(warnings).strip()
    if text.startswith("["):
        parsed = _loads(text)
        if isinstance(parsed, list):
            return [str(w) for w in parsed]
    parts = []
    for line in text.splitlines():
        cleaned = _BULLET_RE.sub("", line.strip()).strip()
        if cleaned:
            parts.append(cleaned)
    return parts or [text]


def _to_int(value, default=None):
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(round(value)) if math.isfinite(value) else default
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return default


def _canonical_course(raw: dict) -> dict:
    course = {
        "code": str(raw.get("code") or "").strip(),
        "name": str(raw.get("name") or "").strip(),
        "credits": _to_int(raw.get("credits"), 0),
    }
    if not MIN_COURSE_CREDITS <= course["credits"] <= MAX_COURSE_CREDITS:
        print(
            f"[NORMALIZE] Course {course['code']!r} has {course['credits']} credits "
            f"(expected {MIN_COURSE_CREDITS}-{MAX_COURSE_CREDITS})"
        )
    options = raw.get("options")
    if isinstance(options, list):
        options = ", ".join(str(o) for o in options if o)
    if options:
        course["options"] = str(options)
    return course


def _semester_type(raw: dict) -> str:
    sem_type = str(raw.get("type") or "").lower().replace("-", "").replace("_", "").strip()
    has_courses = bool(raw.get("courses"))
    term = raw.get("term", "")
    if sem_type == COOP:
        if has_courses:
            print(f"[NORMALIZE] Semester {term!r} marked as co-op but has courses; treating as academic")
            return ACADEMIC
        return COOP
    if sem_type == ACADEMIC:
        return ACADEMIC
    if has_courses:
        return ACADEMIC
    if raw.get("coopNumber") is not None:
        return COOP
    print(f"[NORMALIZE] Unknown semester type {raw.get('type')!r} for {term!r}; defaulting to academic")
    return ACADEMIC


def _canonical_semester(raw: dict) -> dict:
    sem_type = _semester_type(raw)
    semester = {
        "term": normalize_semester_label(str(raw.get("term") or "")),
        "type": sem_type,
    }
    if sem_type == COOP:
        semester["coopNumber"] = _to_int(raw.get("coopNumber"), 1) or 1
    else:
        raw_courses = raw.get("courses")
        if not isinstance(raw_courses, list):
            raw_courses = []
        courses = [_canonical_course(c) for c in raw_courses if isinstance(c, dict)]
        semester["courses"] = courses
        declared = _to_int(raw.get("totalCredits"))
        semester["totalCredits"] = declared if declared is not None else sum(course_credits(c) for c in courses)
    status = str(raw.get("status") or "").strip().lower()
    if status in SEMESTER_STATUSES:
        semester["status"] = status
    return semester


def canonicalize_schedule(value: dict) -> dict:
    """Fill defaults and coerce every field of a parsed schedule to its canonical type."""
    plan = coerce_schedule_fields(value)
    raw_semesters = plan.get("semesters")
    if not isinstance(raw_semesters, list):
        raw_semesters = []
    semesters = [_canonical_semester(s) for s in raw_semesters if isinstance(s, dict)]
    plan["semesters"] = semesters

    for key in ("school", "major", "startTerm", "graduationTerm", "sourceUrl"):
        plan[key] = str(plan.get(key) or "").strip()
    plan["startTerm"] = normalize_semester_label(plan["startTerm"])
    plan["graduationTerm"] = normalize_semester_label(plan["graduationTerm"])
    plan["degree"] = str(plan.get("degree") or "").strip() or DEFAULT_DEGREE
    plan["warnings"] = normalize_warnings(plan.get("warnings"))

    total = plan.get("totalCredits")
    if total in (None, "", 0):
        plan["totalCredits"] = academic_credit_total(semesters)
    else:
        plan["totalCredits"] = _to_int(total, DEFAULT_TARGET_CREDITS) or DEFAULT_TARGET_CREDITS
    return plan


# ── Entry point ───────────────────────────────────────────────────────────────

def normalize_schedule(raw) -> dict:
    """
    Best-effort conversion of arbitrary agent output into a SchedulePlan.

    Never raises: on total failure returns an empty plan whose warnings record
    the failure, so callers can rely on a structurally valid result.
    """
    for name, strategy in PARSE_STRATEGIES:
        try:
            parsed = strategy(raw)
            if parsed is None:
                continue
            plan = canonicalize_schedule(parsed)
        except (TypeError, ValueError, AttributeError, OverflowError, RecursionError) as exc:
            print(f"[NORMALIZE] strategy {name} failed: {exc}")
            continue
        if name != "direct_shape":
            print(f"[NORMALIZE] parsed schedule via {name}")
        return plan

    kind = type(raw).__name__
    print(f"[WARN] Could not parse schedule from {kind} input; returning empty plan", file=sys.stderr)
    return empty_schedule(
        "The generated schedule could not be parsed. Please try generating it again."
    )
