"""
Canonical schedule shapes and bottom-up credit helpers.

Schedules are JSON-shaped dicts with the camelCase keys the planning agent
emits:

  SchedulePlan  {school, major, degree, startTerm, graduationTerm,
                 totalCredits, semesters, warnings, sourceUrl,
                 studentContext?, transferCredits?}
  academic      {term, type: "academic", courses, totalCredits, status?}
  coop          {term, type: "coop", coopNumber, status?}
  course        {code, name, credits, options?}

Plan-level totalCredits is the degree target until a mutation or validation
pass re-derives it from the semesters.
"""

import re

ACADEMIC = "academic"
COOP = "coop"
SEMESTER_STATUSES = ("completed", "planned")

ELECTIVE_CODE = "ELECTIVE"
ELECTIVE_CODES = {"ELECTIVE", "ELEC"}

DEFAULT_TARGET_CREDITS = 128
DEFAULT_DEGREE = "BS"

MIN_COURSE_CREDITS = 1
MAX_COURSE_CREDITS = 6


def normalize_course_code(code) -> str:
    """'  cs   1800 ' -> 'CS 1800'. Comparison key only; stored codes are left alone."""
    return re.sub(r"\s+", " ", str(code or "")).strip().upper()


def is_elective_slot(course: dict) -> bool:
    return normalize_course_code(course.get("code")) in ELECTIVE_CODES


def is_academic(semester: dict) -> bool:
    return semester.get("type") == ACADEMIC


def is_coop(semester: dict) -> bool:
    return semester.get("type") == COOP


def course_credits(course: dict) -> int:
    try:
        return int(course.get("credits") or 0)
    except (TypeError, ValueError, OverflowError):
        return 0


def semester_credits(semester: dict) -> int:
    if not is_academic(semester):
        return 0
    return sum(course_credits(c) for c in semester.get("courses") or [])


def academic_credit_total(semesters: list[dict]) -> int:
    return sum(semester_credits(s) for s in semesters if is_academic(s))


def empty_schedule(warning: str | None = None) -> dict:
    return {
        "school": "",
        "major": "",
        "degree": DEFAULT_DEGREE,
        "startTerm": "",
        "graduationTerm": "",
        "totalCredits": 0,
        "semesters": [],
        "warnings": [warning] if warning else [],
        "sourceUrl": "",
    }


def recalculate_semester_credits(schedule: dict) -> dict:
    """
    Re-derive credits course -> semester -> plan.

    Every academic semester's totalCredits becomes the sum of its courses and
    the plan totalCredits becomes the sum over academic semesters. Returns a
    new dict; the input is not modified.
    """
    semesters = []
    for semester in schedule.get("semesters") or []:
        if is_academic(semester):
            courses = [dict(c) for c in semester.get("courses") or []]
            semesters.append({
                **semester,
                "courses": courses,
                "totalCredits": sum(course_credits(c) for c in courses),
            })
        else:
            semesters.append(dict(semester))
    return {
        **schedule,
        "semesters": semesters,
        "totalCredits": academic_credit_total(semesters),
    }


def find_semester_index(schedule: dict, term: str) -> int:
    wanted = (term or "").strip().lower()
    for idx, semester in enumerate(schedule.get("semesters") or []):
        if str(semester.get("term", "")).strip().lower() == wanted:
            return idx
    return -1


def find_course(schedule: dict, code: str) -> tuple[int, int]:
    """First (semester_index, course_index) whose code matches, else (-1, -1)."""
    wanted = normalize_course_code(code)
    for sem_idx, semester in enumerate(schedule.get("semesters") or []):
        if not is_academic(semester):
            continue
        for course_idx, course in enumerate(semester.get("courses") or []):
            if normalize_course_code(course.get("code")) == wanted:
                return sem_idx, course_idx
    return -1, -1


def iter_courses(schedule: dict):
    """Yield (semester, course) for every course in every academic semester."""
    for semester in schedule.get("semesters") or []:
        if not is_academic(semester):
            continue
        for course in semester.get("courses") or []:
            yield semester, course
