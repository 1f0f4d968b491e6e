"""
Structural and consistency validation for agent-generated schedules.
Pure functions: no Flask, no data-loader, no I/O.

validate_schedule() removes duplicate courses, flags placeholders and bad
codes, checks per-semester load and credit bounds, recomputes every credit
total, and optionally trims surplus elective slots toward the degree target.
It never raises on bad schedule content; every defect becomes an issue.
"""

import copy
import re
from collections import Counter
from typing import Dict, List, Optional

from data_loader import DEFAULT_DISCONTINUED_COURSES
from schedule_model import (
    DEFAULT_TARGET_CREDITS,
    course_credits,
    is_academic,
    is_elective_slot,
    normalize_course_code,
)


MIN_MAIN_COURSES = 4          # labs don't count
MIN_MAIN_COURSES_TRIMMED = 3  # floor a trim may leave behind
MIN_CREDITS = 16
MIN_CREDITS_FINAL = 12
MAX_CREDITS = 21
MAX_TOTAL_CREDITS = 160
TRIM_TOLERANCE = 15
MAX_VALID_TARGET = 200
DEFAULT_MAIN_COURSE_THRESHOLD = 3
EXCESSIVE_ELECTIVE_RATIO = 0.5
EXCESSIVE_ELECTIVE_MIN_COUNT = 10

COURSE_CODE_RE = re.compile(r"^[A-Z]{2,5}\s*\d{3,4}[A-Z]?$")

PLACEHOLDER_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\(placeholder\)",
        r"placeholder",
        r"\(tbd\)",
        r"^general\s*elective$",
        r"^free\s*elective$",
        r"^elective$",
        r"^concentration\s*(course|elective)?$",
        r"^khoury\s*elective",
        r"^major\s*elective",
        r"^technical\s*elective",
        r"^science\s*requirement",
        r"^lab\s*science",
        r"^nupath",
        r"^tbd$",
        r"^\s*$",
    )
]
PLACEHOLDER_CODE_PREFIXES = {"ELEC", "TBD", "XXX", "GENERAL", "SCIENCE"}

# Lower number is trimmed first; first matching substring wins.
ELECTIVE_REMOVAL_PRIORITY = {
    "free elective": 1,
    "free": 1,
    "unrestricted elective": 1,
    "general education": 2,
    "gen ed": 2,
    "nupath": 2,
    "arts": 2,
    "humanities": 2,
    "social science": 2,
    "major elective": 3,
    "concentration elective": 4,
    "technical elective": 4,
    "science with lab": 5,
    "science elective": 5,
    "writing": 6,
}
DEFAULT_REMOVAL_PRIORITY = 3

ISSUE_TYPES = (
    "duplicate",
    "placeholder",
    "credit_mismatch",
    "full_time_violation",
    "credit_overage",
    "credit_underage",
    "invalid_code",
    "discontinued_course",
    "excessive_electives",
    "missing_data",
)


def _issue(issue_type: str, severity: str, message: str, semester=None, course=None) -> dict:
    issue = {"type": issue_type, "severity": severity, "message": message}
    if semester is not None:
        issue["semester"] = semester
    if course is not None:
        issue["course"] = course
    return issue


def is_valid_course_code(code: str) -> bool:
    return bool(COURSE_CODE_RE.match(normalize_course_code(code)))


def is_discontinued_course(
    code: str,
    school_id: Optional[str],
    discontinued: Optional[Dict[str, List[str]]] = None,
) -> bool:
    if not school_id:
        return False
    table = DEFAULT_DISCONTINUED_COURSES if discontinued is None else discontinued
    normalized = normalize_course_code(code)
    for entry in table.get(str(school_id).strip().lower(), []):
        entry = normalize_course_code(entry)
        if normalized == entry or normalized.startswith(entry + " "):
            return True
    return False


def is_placeholder_course(course: dict) -> bool:
    """
    True for entries that are not real catalog courses: generic names like
    'TBD' or 'Free Elective', placeholder code prefixes, or a code that just
    repeats the name. Callers skip this check for courses carrying options.
    """
    name = str(course.get("name") or "")
    code = str(course.get("code") or "")
    if any(p.search(name) for p in PLACEHOLDER_PATTERNS):
        return True
    prefix = code.split()[0].upper() if code.split() else ""
    if prefix in PLACEHOLDER_CODE_PREFIXES:
        return True
    return re.sub(r"\s+", "", code.lower()) == re.sub(r"\s+", "", name.lower())


def calculate_main_course_threshold(schedule: dict) -> int:
    """
    Credit value at or above which a course counts as a main (non-lab) course.

    Mode of non-elective credit values above 1, minus one, floored at 2: a
    4-credit school yields 3, a 3-credit school yields 2. Ties go to the value
    seen first. 3 when the plan has no courses.
    """
    credits = []
    for semester in schedule.get("semesters") or []:
        if not is_academic(semester):
            continue
        for course in semester.get("courses") or []:
            if is_elective_slot(course):
                continue
            value = course_credits(course)
            if value > 0:
                credits.append(value)
    if not credits:
        return DEFAULT_MAIN_COURSE_THRESHOLD

    counts = Counter(c for c in credits if c > 1)
    mode = 3
    best = 0
    for value, count in counts.items():
        if count > best:
            best = count
            mode = value
    return max(2, mode - 1)


def resolve_target_credits(schedule: dict, target_credits: Optional[int] = None) -> int:
    if target_credits is not None:
        return int(target_credits)
    declared = schedule.get("totalCredits")
    if isinstance(declared, (int, float)) and not isinstance(declared, bool) and 0 < declared < MAX_VALID_TARGET:
        return int(declared)
    return DEFAULT_TARGET_CREDITS


def elective_removal_priority(course: dict) -> int:
    name = str(course.get("name") or "").lower()
    for pattern, priority in ELECTIVE_REMOVAL_PRIORITY.items():
        if pattern in name:
            return priority
    return DEFAULT_REMOVAL_PRIORITY


def trim_excess_electives(
    semesters: List[dict],
    current_credits: int,
    target_credits: int,
    main_course_threshold: int,
) -> dict:
    """
    Greedily drop elective slots until the plan is at or below target.

    Heuristic, not minimal: candidates are ordered by removal priority, then
    later semesters first, and a removal is skipped when it would leave its
    semester with fewer than MIN_MAIN_COURSES_TRIMMED main courses. Only
    ELECTIVE/ELEC-coded courses are ever removed.

    Returns {"semesters", "trimmed_count", "trimmed_credits"}; the input list
    is not modified.
    """
    working = [
        {**s, "courses": list(s.get("courses") or [])} if is_academic(s) else s
        for s in semesters
    ]
    if current_credits <= target_credits + TRIM_TOLERANCE:
        return {"semesters": working, "trimmed_count": 0, "trimmed_credits": 0}

    credits_to_trim = current_credits - target_credits
    candidates = []
    for sem_idx, semester in enumerate(working):
        if not is_academic(semester):
            continue
        for course in semester["courses"]:
            if is_elective_slot(course):
                candidates.append((elective_removal_priority(course), sem_idx, course))
    candidates.sort(key=lambda c: (c[0], -c[1]))

    trimmed_count = 0
    trimmed_credits = 0
    for _, sem_idx, course in candidates:
        if trimmed_credits >= credits_to_trim:
            break
        courses = working[sem_idx]["courses"]
        remaining_main = sum(
            1 for c in courses
            if c is not course and course_credits(c) >= main_course_threshold
        )
        if remaining_main < MIN_MAIN_COURSES_TRIMMED:
            continue
        working[sem_idx]["courses"] = [c for c in courses if c is not course]
        working[sem_idx]["totalCredits"] = sum(course_credits(c) for c in working[sem_idx]["courses"])
        trimmed_count += 1
        trimmed_credits += course_credits(course)

    return {"semesters": working, "trimmed_count": trimmed_count, "trimmed_credits": trimmed_credits}


def validate_schedule(
    schedule: dict,
    school_id: Optional[str] = None,
    trim_excess_credits: bool = True,
    target_credits: Optional[int] = None,
    discontinued: Optional[Dict[str, List[str]]] = None,
) -> dict:
    """
    Validate and repair a normalized schedule.

    Returns:
      {
        "schedule": dict,   # deduplicated, credit totals recomputed
        "issues":   [{"type", "severity", "message", "semester"?, "course"?}],
        "stats":    {...counters...},
      }

    The input is not modified and the result is deterministic for a given
    input and options.
    """
    schedule = copy.deepcopy(schedule)
    semesters_in = [s for s in schedule.get("semesters") or [] if isinstance(s, dict)]
    issues: List[dict] = []

    main_threshold = calculate_main_course_threshold(schedule)
    target = resolve_target_credits(schedule, target_credits)
    actual_credits = sum(
        course_credits(c)
        for s in semesters_in if is_academic(s)
        for c in s.get("courses") or []
    )

    electives_trimmed = 0
    working = semesters_in
    if trim_excess_credits and actual_credits > target + TRIM_TOLERANCE:
        trim = trim_excess_electives(semesters_in, actual_credits, target, main_threshold)
        working = trim["semesters"]
        electives_trimmed = trim["trimmed_count"]
        if electives_trimmed:
            issues.append(_issue(
                "credit_overage",
                "warning",
                f"Trimmed {electives_trimmed} elective(s) to reduce credits from "
                f"{actual_credits} toward target of {target}.",
            ))

    academic_positions = [i for i, s in enumerate(working) if is_academic(s)]
    last_academic = academic_positions[-1] if academic_positions else -1

    seen_codes: set = set()
    counters = Counter()
    validated_semesters = []

    for sem_idx, semester in enumerate(working):
        if not is_academic(semester):
            validated_semesters.append(semester)
            continue

        term = semester.get("term", "")
        kept = []
        main_count = 0

        for course in semester.get("courses") or []:
            counters["total_courses"] += 1
            code = str(course.get("code") or "")
            normalized = normalize_course_code(code)
            elective = is_elective_slot(course)
            counters["elective_count" if elective else "specific_course_count"] += 1

            if not normalized:
                issues.append(_issue(
                    "missing_data", "warning",
                    f"Course in {term} has no course code: \"{course.get('name', '')}\"",
                    semester=term,
                ))

            if not elective and not is_valid_course_code(code):
                counters["invalid_codes"] += 1
                issues.append(_issue(
                    "invalid_code", "warning",
                    f"Potentially invalid course code format: {code} - \"{course.get('name', '')}\"",
                    semester=term, course=code,
                ))

            if not elective and is_discontinued_course(code, school_id, discontinued):
                counters["discontinued_courses"] += 1
                issues.append(_issue(
                    "discontinued_course", "error",
                    f"DISCONTINUED COURSE: {code} - \"{course.get('name', '')}\" is no longer offered.",
                    semester=term, course=code,
                ))

            if not elective and normalized in seen_codes:
                counters["duplicates_removed"] += 1
                issues.append(_issue(
                    "duplicate", "warning",
                    f"Removed duplicate course: {code} ({course.get('name', '')})",
                    semester=term, course=code,
                ))
                continue

            if not course.get("options") and is_placeholder_course(course):
                counters["placeholders_found"] += 1
                issues.append(_issue(
                    "placeholder", "warning",
                    f"Placeholder course detected: {code} - \"{course.get('name', '')}\". "
                    "Consider selecting a specific course.",
                    semester=term, course=code,
                ))

            if course_credits(course) >= main_threshold:
                main_count += 1
            if not elective:
                seen_codes.add(normalized)
            kept.append(course)

        calculated = sum(course_credits(c) for c in kept)
        is_last = sem_idx == last_academic

        if not is_last and main_count < MIN_MAIN_COURSES:
            counters["full_time_violations"] += 1
            issues.append(_issue(
                "full_time_violation", "warning",
                f"{term} has only {main_count} main courses (expected {MIN_MAIN_COURSES}+)",
                semester=term,
            ))

        if calculated > MAX_CREDITS:
            counters["credit_overages"] += 1
            issues.append(_issue(
                "credit_overage", "warning",
                f"{term} exceeds maximum {MAX_CREDITS} credits (actual {calculated})",
                semester=term,
            ))

        min_credits = MIN_CREDITS_FINAL if is_last else MIN_CREDITS
        if calculated < min_credits:
            counters["credit_underages"] += 1
            issues.append(_issue(
                "credit_underage", "warning",
                f"{term} is below minimum {min_credits} credits for full-time status (actual {calculated})",
                semester=term,
            ))

        declared = semester.get("totalCredits")
        if declared is not None and declared != calculated:
            counters["credit_mismatches"] += 1
            issues.append(_issue(
                "credit_mismatch", "warning",
                f"Credit mismatch in {term}: declared {declared}, actual {calculated}",
                semester=term,
            ))

        validated_semesters.append({**semester, "courses": kept, "totalCredits": calculated})

    if not academic_positions:
        issues.append(_issue("missing_data", "warning", "Schedule contains no academic semesters."))

    total_credits = sum(s["totalCredits"] for s in validated_semesters if is_academic(s))
    total_exceeded = total_credits > MAX_TOTAL_CREDITS
    if total_exceeded:
        issues.append(_issue(
            "credit_overage", "warning",
            f"Total credits ({total_credits}) is unusually high. Verify this matches your degree requirements.",
        ))

    total_courses = counters["total_courses"]
    elective_count = counters["elective_count"]
    elective_ratio = elective_count / total_courses if total_courses else 0.0
    excessive_electives = (
        elective_ratio > EXCESSIVE_ELECTIVE_RATIO and elective_count > EXCESSIVE_ELECTIVE_MIN_COUNT
    )
    if excessive_electives:
        issues.append(_issue(
            "excessive_electives", "warning",
            f"Schedule has {elective_count} ELECTIVE slots out of {total_courses} courses "
            f"({round(elective_ratio * 100)}%). Many required courses may be missing specific codes.",
        ))

    warnings = _summary_warnings(counters, electives_trimmed, target, excessive_electives)
    schedule["semesters"] = validated_semesters
    schedule["totalCredits"] = total_credits
    schedule["warnings"] = list(schedule.get("warnings") or []) + warnings

    stats = {
        "total_courses": total_courses,
        "duplicates_removed": counters["duplicates_removed"],
        "placeholders_found": counters["placeholders_found"],
        "credit_mismatches": counters["credit_mismatches"],
        "full_time_violations": counters["full_time_violations"],
        "credit_overages": counters["credit_overages"],
        "credit_underages": counters["credit_underages"],
        "invalid_codes": counters["invalid_codes"],
        "discontinued_courses": counters["discontinued_courses"],
        "total_credits_exceeded": total_exceeded,
        "main_course_threshold": main_threshold,
        "electives_trimmed": electives_trimmed,
        "target_credits": target,
        "actual_credits": actual_credits,
        "final_credits": total_credits,
        "elective_count": elective_count,
        "specific_course_count": counters["specific_course_count"],
    }
    return {"schedule": schedule, "issues": issues, "stats": stats}


def _summary_warnings(counters: Counter, electives_trimmed: int, target: int, excessive_electives: bool) -> List[str]:
    """One human-readable line per issue category, counts only."""
    warnings = []
    if counters["duplicates_removed"]:
        warnings.append(f"{counters['duplicates_removed']} duplicate course(s) were removed from your schedule.")
    if counters["placeholders_found"]:
        warnings.append(
            f"{counters['placeholders_found']} placeholder course(s) detected. "
            "Work with your advisor to select specific courses."
        )
    if counters["full_time_violations"]:
        warnings.append(
            f"{counters['full_time_violations']} semester(s) have fewer than {MIN_MAIN_COURSES} main courses. "
            "Consider adding courses to maintain full-time status."
        )
    if counters["credit_overages"]:
        warnings.append(
            f"{counters['credit_overages']} semester(s) exceed {MAX_CREDITS} credits. "
            "Consider spreading courses across semesters."
        )
    if counters["credit_underages"]:
        warnings.append(f"{counters['credit_underages']} semester(s) are below {MIN_CREDITS} credits for full-time status.")
    if counters["discontinued_courses"]:
        warnings.append(
            f"{counters['discontinued_courses']} course(s) are DISCONTINUED and no longer offered. "
            "Please find current replacements."
        )
    if electives_trimmed:
        warnings.append(
            f"{electives_trimmed} elective(s) were removed to match the degree requirement of {target} credits."
        )
    if excessive_electives:
        warnings.append(
            f"{counters['elective_count']} courses are marked as ELECTIVE. Required courses should have specific codes."
        )
    return warnings


def has_quality_issues(schedule: dict) -> bool:
    """Quick check used before accepting a generation without retry."""
    stats = validate_schedule(schedule)["stats"]
    return stats["duplicates_removed"] > 0 or stats["placeholders_found"] > 2
