"""
Completed-coursework grouping.

Turns the flat course list a transcript parser produces
({code, name, credits, grade, semester} per row) into TranscriptData:

  {
    "completed_semesters":     [{"term", "courses", "totalCredits"}],
    "transfer_credits":        [course, ...],
    "total_completed_credits": int,
    "total_transfer_credits":  int,
    "last_completed_term":     str | None,
    "next_semester":           str | None,
    "completed_coops":         int,
  }
"""

import json
import re
import sys

from normalizer import strip_code_fences
from schedule_model import ACADEMIC, course_credits, recalculate_semester_credits
from semesters import next_semester, normalize_semester_label, term_sort_key


# Grades that mark a co-op as finished. "P" is deliberately absent: transcript
# parsing uses it for Planned rows from degree plans, not Pass. W, IP, F, T and
# blank are not completions either.
COMPLETED_COOP_GRADES = frozenset({
    "S", "CR",
    "A+", "A", "A-",
    "B+", "B", "B-",
    "C+", "C", "C-",
    "D+", "D", "D-",
})

MAIN_COURSE_MIN_CREDITS = 3
REGULAR_TERM_RE = re.compile(r"^(Fall|Spring)", re.IGNORECASE)
SAMPLE_SEMESTER_COUNT = 3


def is_coop_course(course: dict) -> bool:
    code = str(course.get("code") or "").strip().upper()
    name = str(course.get("name") or "").lower()
    return code.startswith("COOP") or "co-op work experience" in name


def is_transfer_term(semester: str) -> bool:
    lower = (semester or "").strip().lower()
    return (
        "transfer" in lower
        or "ap " in lower
        or "advanced placement" in lower
        or lower == "ap"
    )


def is_completed_coop(course: dict, completed_grades=COMPLETED_COOP_GRADES) -> bool:
    if not is_coop_course(course):
        return False
    return str(course.get("grade") or "").strip().upper() in completed_grades


def group_courses_by_semester(courses: list, completed_coop_grades=COMPLETED_COOP_GRADES) -> dict:
    """
    Partition into co-op / transfer / ordinary rows, group ordinary rows by
    term in chronological order, and total completed and transfer credits
    separately. Co-op rows only feed completed_coops.
    """
    transfer = []
    coops = []
    by_term: dict[str, list] = {}

    for course in courses or []:
        if not isinstance(course, dict):
            continue
        if is_coop_course(course):
            coops.append(course)
        elif is_transfer_term(str(course.get("semester") or "")):
            transfer.append(dict(course))
        else:
            by_term.setdefault(str(course.get("semester") or ""), []).append(dict(course))

    completed_semesters = [
        {
            "term": term,
            "courses": term_courses,
            "totalCredits": sum(course_credits(c) for c in term_courses),
        }
        for term, term_courses in by_term.items()
    ]
    completed_semesters.sort(key=lambda s: term_sort_key(s["term"]))

    last_term = completed_semesters[-1]["term"] if completed_semesters else None
    return {
        "completed_semesters": completed_semesters,
        "transfer_credits": transfer,
        "total_completed_credits": sum(s["totalCredits"] for s in completed_semesters),
        "total_transfer_credits": sum(course_credits(c) for c in transfer),
        "last_completed_term": last_term,
        "next_semester": next_semester(last_term) if last_term else None,
        "completed_coops": sum(1 for c in coops if is_completed_coop(c, completed_coop_grades)),
    }


def _extract_json_array(text: str) -> str:
    trimmed = text.strip()
    if trimmed.startswith("[") and trimmed.endswith("]"):
        return trimmed
    unfenced = strip_code_fences(trimmed)
    if unfenced != trimmed:
        return unfenced
    start = trimmed.find("[")
    end = trimmed.rfind("]")
    if start != -1 and end > start:
        return trimmed[start:end + 1]
    return trimmed


def _coerce_completed_course(entry: dict) -> dict:
    return {
        "code": str(entry.get("code") or "").strip(),
        "name": str(entry.get("name") or "").strip(),
        "credits": course_credits(entry),
        "grade": str(entry.get("grade") or "").strip().upper(),
        "semester": normalize_semester_label(str(entry.get("semester") or "")),
    }


def parse_completed_courses(raw) -> list[dict]:
    """
    Accept the transcript parser's answer (list, JSON text, fenced JSON, or
    JSON embedded in prose) and return coerced course rows.

    Raises ValueError when no JSON array can be recovered.
    """
    if isinstance(raw, dict):
        if isinstance(raw.get("courses"), list):
            raw = raw["courses"]
        elif "answer" in raw:
            raw = raw["answer"]
    if isinstance(raw, str):
        text = _extract_json_array(raw)
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Failed to parse transcript: invalid JSON ({exc.msg})") from exc
    if not isinstance(raw, list):
        raise ValueError("Failed to parse transcript: expected a list of courses")

    courses = []
    skipped = 0
    for entry in raw:
        if not isinstance(entry, dict):
            skipped += 1
            continue
        courses.append(_coerce_completed_course(entry))
    if skipped:
        print(f"[WARN] Skipped {skipped} non-object transcript row(s)", file=sys.stderr)
    return courses


def convert_to_schedule_semesters(transcript_data: dict) -> list[dict]:
    """Completed semesters as academic schedule semesters with status 'completed'."""
    return [
        {
            "term": sem["term"],
            "type": ACADEMIC,
            "courses": [
                {"code": c.get("code", ""), "name": c.get("name", ""), "credits": course_credits(c)}
                for c in sem["courses"]
            ],
            "totalCredits": sem["totalCredits"],
            "status": "completed",
        }
        for sem in transcript_data.get("completed_semesters") or []
    ]


def merge_completed_semesters(schedule: dict, transcript_data: dict | None) -> dict:
    """
    Prepend completed semesters to a generated plan.

    Generated semesters are marked 'planned'. The plan total becomes completed
    + transfer credits plus the planned academic total, and transfer rows are
    attached as transferCredits. With no completed semesters the schedule is
    returned unchanged.
    """
    if not transcript_data or not transcript_data.get("completed_semesters"):
        return schedule

    planned = recalculate_semester_credits(schedule)
    planned_semesters = [{**s, "status": "planned"} for s in planned["semesters"]]
    prior_credits = (
        transcript_data.get("total_completed_credits", 0)
        + transcript_data.get("total_transfer_credits", 0)
    )
    return {
        **schedule,
        "semesters": convert_to_schedule_semesters(transcript_data) + planned_semesters,
        "totalCredits": prior_credits + planned["totalCredits"],
        "transferCredits": [
            {
                "code": c.get("code", ""),
                "name": c.get("name", ""),
                "credits": course_credits(c),
                "grade": c.get("grade", ""),
            }
            for c in transcript_data.get("transfer_credits") or []
        ],
    }


def summarize_semester_pattern(transcript_data: dict | None) -> dict | None:
    """
    Typical load from completed Fall/Spring terms, for prompt construction.
    Summer terms are lighter and skipped. None when there is no history.
    """
    if not transcript_data:
        return None
    regular = [
        s for s in transcript_data.get("completed_semesters") or []
        if REGULAR_TERM_RE.match(s["term"])
    ]
    if not regular:
        return None

    samples = []
    credit_counts: dict[int, int] = {}
    for sem in regular:
        main = [c for c in sem["courses"] if course_credits(c) >= MAIN_COURSE_MIN_CREDITS]
        for c in main:
            credit_counts[course_credits(c)] = credit_counts.get(course_credits(c), 0) + 1
        samples.append({
            "term": sem["term"],
            "total_credits": sem["totalCredits"],
            "main_course_count": len(main),
        })

    typical = max(credit_counts, key=credit_counts.get) if credit_counts else 4
    return {
        "avg_credits_per_semester": round(sum(s["total_credits"] for s in samples) / len(samples)),
        "avg_main_courses_per_semester": round(sum(s["main_course_count"] for s in samples) / len(samples)),
        "typical_main_course_credits": typical,
        "min_main_courses": max(3, min(s["main_course_count"] for s in samples)),
        "sample_semesters": samples[-SAMPLE_SEMESTER_COUNT:],
    }
