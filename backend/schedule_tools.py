"""
Named schedule edits invoked by the planning agent.

Every tool is a plain function taking the current schedule plus keyword
parameters and returning a ToolResult:

  {"schedule": dict | None, "message": str, "data": dict, "changed": bool}

Mutating tools never modify their input and always return a schedule whose
credit totals were re-derived bottom-up. Read-only tools return schedule=None.
Rejected requests raise ScheduleToolError carrying an HTTP status code.

apply_tool() is the read -> transform -> write-back cycle against a
ScheduleStore.
"""

import inspect
import json
import re

from data_loader import DEFAULT_ELECTIVE_POOL
from schedule_model import (
    ACADEMIC,
    COOP,
    MAX_COURSE_CREDITS,
    MIN_COURSE_CREDITS,
    course_credits,
    find_course,
    find_semester_index,
    is_academic,
    is_coop,
    is_elective_slot,
    normalize_course_code,
    recalculate_semester_credits,
    semester_credits,
)
from semesters import normalize_semester_label, sort_semesters
from validators import validate_schedule


DEFAULT_FILL_TARGET = 16
DEFAULT_LIGHT_THRESHOLD = 16
DEFAULT_SUMMARY_TARGET = 130

TERM_RE = re.compile(r"^(Fall|Spring|Summer(\s*[12])?)\s+\d{4}$", re.IGNORECASE)


class ScheduleToolError(Exception):
    def __init__(self, message: str, status_code: int = 400, data: dict | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.data = data or {}


def _result(schedule, message: str, data: dict | None = None, changed: bool = True) -> dict:
    return {"schedule": schedule, "message": message, "data": data or {}, "changed": changed}


def _updated(schedule: dict, semesters: list) -> dict:
    return recalculate_semester_credits({**schedule, "semesters": semesters})


def _require_semester(schedule: dict, term: str, label: str = "Semester") -> int:
    idx = find_semester_index(schedule, term)
    if idx == -1:
        available = ", ".join(s.get("term", "") for s in schedule.get("semesters") or [])
        raise ScheduleToolError(f'{label} "{term}" not found. Available: {available}', 404)
    return idx


def _require_course(schedule: dict, code: str) -> tuple[int, int]:
    sem_idx, course_idx = find_course(schedule, code)
    if sem_idx == -1:
        raise ScheduleToolError(f'Course "{code}" not found in schedule', 404)
    return sem_idx, course_idx


def _coerce_credits(credits) -> int:
    if isinstance(credits, bool) or not isinstance(credits, (int, float)):
        raise ScheduleToolError(f"credits must be a number between {MIN_COURSE_CREDITS} and {MAX_COURSE_CREDITS}")
    if not MIN_COURSE_CREDITS <= credits <= MAX_COURSE_CREDITS:
        raise ScheduleToolError(f"credits must be a number between {MIN_COURSE_CREDITS} and {MAX_COURSE_CREDITS}")
    return int(round(credits))


def _existing_term(schedule: dict, code: str) -> str | None:
    """Term already holding a specific course code. Elective slots never clash."""
    if is_elective_slot({"code": code}):
        return None
    sem_idx, _ = find_course(schedule, code)
    if sem_idx == -1:
        return None
    return schedule["semesters"][sem_idx].get("term", "")


def _new_course(code: str, name: str, credits: int, options: str | None = None) -> dict:
    course = {"code": code, "name": name, "credits": credits}
    if options:
        course["options"] = options
    return course


# ---------------------------------------------------------------------------
# Course edits
# ---------------------------------------------------------------------------

def add_course(schedule: dict, to_semester: str, course_code: str, course_name: str, credits, options: str | None = None) -> dict:
    credits = _coerce_credits(credits)
    idx = _require_semester(schedule, to_semester)
    if is_coop(schedule["semesters"][idx]):
        raise ScheduleToolError(f'Cannot add course to co-op semester "{to_semester}"')
    existing = _existing_term(schedule, course_code)
    if existing is not None:
        raise ScheduleToolError(f'Course "{course_code}" already exists in {existing}')

    semesters = list(schedule["semesters"])
    target = semesters[idx]
    semesters[idx] = {**target, "courses": list(target.get("courses") or []) + [_new_course(course_code, course_name, credits, options)]}
    return _result(
        _updated(schedule, semesters),
        f'Added "{course_code}: {course_name}" ({credits}cr) to {target["term"]}',
        {"term": target["term"], "code": course_code},
    )


def remove_course(schedule: dict, course_code: str) -> dict:
    sem_idx, course_idx = _require_course(schedule, course_code)
    semesters = list(schedule["semesters"])
    semester = semesters[sem_idx]
    courses = list(semester["courses"])
    removed = courses.pop(course_idx)
    semesters[sem_idx] = {**semester, "courses": courses}
    return _result(
        _updated(schedule, semesters),
        f'Removed "{course_code}: {removed.get("name", "")}" from {semester["term"]}',
        {"term": semester["term"], "code": removed.get("code", "")},
    )


def move_course(schedule: dict, course_code: str, to_semester: str) -> dict:
    sem_idx, course_idx = _require_course(schedule, course_code)
    target_idx = _require_semester(schedule, to_semester, "Target semester")
    if is_coop(schedule["semesters"][target_idx]):
        raise ScheduleToolError(f'Cannot move course to co-op semester "{to_semester}"')
    if target_idx == sem_idx:
        return _result(schedule, f'Course "{course_code}" is already in {to_semester}', changed=False)

    semesters = list(schedule["semesters"])
    source = semesters[sem_idx]
    courses = list(source["courses"])
    course = courses.pop(course_idx)
    semesters[sem_idx] = {**source, "courses": courses}
    target = semesters[target_idx]
    semesters[target_idx] = {**target, "courses": list(target.get("courses") or []) + [course]}
    return _result(
        _updated(schedule, semesters),
        f'Moved "{course_code}" from {source["term"]} to {target["term"]}',
        {"from": source["term"], "to": target["term"]},
    )


def swap_courses(schedule: dict, course_code1: str, course_code2: str) -> dict:
    sem1, pos1 = _require_course(schedule, course_code1)
    sem2, pos2 = _require_course(schedule, course_code2)

    semesters = list(schedule["semesters"])
    first = semesters[sem1]["courses"][pos1]
    second = semesters[sem2]["courses"][pos2]
    for sem_idx in {sem1, sem2}:
        semesters[sem_idx] = {**semesters[sem_idx], "courses": list(semesters[sem_idx]["courses"])}
    semesters[sem1]["courses"][pos1] = second
    semesters[sem2]["courses"][pos2] = first

    term1 = semesters[sem1]["term"]
    term2 = semesters[sem2]["term"]
    if sem1 == sem2:
        message = f'Swapped "{course_code1}" and "{course_code2}" within {term1}'
    else:
        message = f'Swapped "{course_code1}" ({term1}) with "{course_code2}" ({term2})'
    return _result(_updated(schedule, semesters), message)


def bulk_add_courses(schedule: dict, courses=None, courses_json: str | None = None) -> dict:
    """
    Add many courses at once. Each entry is {term, courseCode, courseName,
    credits, options?}; invalid entries are reported in data["errors"] and
    skipped. Fails only when nothing could be added.
    """
    if courses is None and courses_json:
        try:
            courses = json.loads(courses_json)
        except json.JSONDecodeError as exc:
            raise ScheduleToolError(f"Invalid JSON in coursesJson: {exc.msg}") from exc
    if not isinstance(courses, list) or not courses:
        raise ScheduleToolError("courses array (or coursesJson) is required")

    working = recalculate_semester_credits(schedule)
    errors = []
    added = []
    for n, entry in enumerate(courses, start=1):
        entry = entry if isinstance(entry, dict) else {}
        code = entry.get("courseCode")
        try:
            if not entry.get("term") or not code or not entry.get("courseName") or entry.get("credits") is None:
                raise ScheduleToolError("Missing required fields (term, courseCode, courseName, credits)")
            result = add_course(
                working,
                entry["term"],
                code,
                entry["courseName"],
                entry["credits"],
                entry.get("options"),
            )
        except ScheduleToolError as exc:
            label = f"Course {n} ({code})" if code else f"Course {n}"
            errors.append(f"{label}: {exc.message}")
            continue
        working = result["schedule"]
        added.append(f'{code} to {result["data"]["term"]}')

    if not added:
        raise ScheduleToolError("No valid courses to add", 400, {"errors": errors})
    return _result(
        working,
        f"Added {len(added)} course(s): {', '.join(added)}",
        {"added_count": len(added), "added": added, "errors": errors},
    )


def bulk_remove_courses(schedule: dict, course_codes=None, course_codes_str: str | None = None) -> dict:
    if course_codes is None and course_codes_str:
        course_codes = [c.strip() for c in course_codes_str.split(",") if c.strip()]
    if not isinstance(course_codes, list) or not course_codes:
        raise ScheduleToolError("courseCodes array (or courseCodesStr) is required")

    wanted = {normalize_course_code(c) for c in course_codes}
    removed = []
    removed_codes = set()
    semesters = []
    for semester in schedule.get("semesters") or []:
        if not is_academic(semester):
            semesters.append(semester)
            continue
        kept = []
        for course in semester.get("courses") or []:
            code = normalize_course_code(course.get("code"))
            if code in wanted:
                removed.append(f'{course.get("code", "")} from {semester["term"]}')
                removed_codes.add(code)
            else:
                kept.append(course)
        semesters.append({**semester, "courses": kept})

    not_found = [c for c in course_codes if normalize_course_code(c) not in removed_codes]
    if not removed:
        raise ScheduleToolError("No courses found to remove", 404, {"not_found": not_found})
    return _result(
        _updated(schedule, semesters),
        f"Removed {len(removed)} course(s): {', '.join(removed)}",
        {"removed_count": len(removed), "removed": removed, "not_found": not_found},
    )


# ---------------------------------------------------------------------------
# Semester edits
# ---------------------------------------------------------------------------

def _blank_semester(term: str, semester_type: str, coop_number=None) -> dict:
    if semester_type == COOP:
        return {"term": term, "type": COOP, "coopNumber": coop_number or 1}
    return {"term": term, "type": ACADEMIC, "courses": [], "totalCredits": 0}


def add_semester(schedule: dict, term: str, type: str = ACADEMIC, coop_number=None) -> dict:
    if not TERM_RE.match((term or "").strip()):
        raise ScheduleToolError(
            'term must be in format "Season YYYY" (e.g., "Fall 2025", "Summer 1 2027", "Summer 2 2027")'
        )
    if type not in (ACADEMIC, COOP):
        raise ScheduleToolError('type must be "academic" or "coop"')
    term = normalize_semester_label(term)
    if find_semester_index(schedule, term) != -1:
        raise ScheduleToolError(f'Semester "{term}" already exists in schedule')

    semester = _blank_semester(term, type, coop_number)
    semesters = sort_semesters(list(schedule.get("semesters") or []) + [semester])
    data = {"term": term, "type": type}
    if type == COOP:
        data["coop_number"] = semester["coopNumber"]
    return _result(_updated(schedule, semesters), f'Added {type} semester "{term}" to schedule', data)


def remove_semester(schedule: dict, term: str, force: bool = False) -> dict:
    idx = _require_semester(schedule, term)
    semester = schedule["semesters"][idx]
    course_count = len(semester.get("courses") or []) if is_academic(semester) else 0
    if course_count and not force:
        raise ScheduleToolError(
            f'Cannot remove "{term}" - it has {course_count} course(s). Remove courses first or use force=true.',
            400,
            {"course_count": course_count},
        )
    semesters = [s for i, s in enumerate(schedule["semesters"]) if i != idx]
    return _result(
        _updated(schedule, semesters),
        f'Removed semester "{semester["term"]}" from schedule',
        {"removed_term": semester["term"], "removed_type": semester.get("type"), "remaining_semesters": len(semesters)},
    )


def _semester_content(semester: dict) -> dict:
    if is_coop(semester):
        return {"type": COOP, "coopNumber": semester.get("coopNumber") or 1}
    return {
        "type": ACADEMIC,
        "courses": list(semester.get("courses") or []),
        "totalCredits": semester_credits(semester),
    }


def _describe(semester: dict) -> str:
    if is_coop(semester):
        return f"Co-op {semester.get('coopNumber', '')}".strip()
    return f"Academic ({semester['totalCredits']} credits, {len(semester['courses'])} courses)"


def swap_semesters(schedule: dict, semester1: str, semester2: str) -> dict:
    """Exchange type and contents of two semesters; each keeps its own term."""
    idx1 = _require_semester(schedule, semester1)
    idx2 = _require_semester(schedule, semester2)
    semesters = list(schedule["semesters"])
    sem1 = semesters[idx1]
    sem2 = semesters[idx2]

    new1 = {"term": sem1["term"], **_semester_content(sem2)}
    new2 = {"term": sem2["term"], **_semester_content(sem1)}
    for new, old in ((new1, sem1), (new2, sem2)):
        if old.get("status"):
            new["status"] = old["status"]
    semesters[idx1] = new1
    semesters[idx2] = new2
    return _result(
        _updated(schedule, semesters),
        f"Swapped {sem1['term']} (now {new1['type']}) with {sem2['term']} (now {new2['type']})",
        {sem1["term"]: _describe(new1), sem2["term"]: _describe(new2)},
    )


def set_semester_type(schedule: dict, term: str, new_type: str, coop_number=None) -> dict:
    if new_type not in (ACADEMIC, COOP):
        raise ScheduleToolError('newType must be "academic" or "coop"')
    idx = _require_semester(schedule, term)
    old = schedule["semesters"][idx]
    old_type = old.get("type")
    if old_type == new_type:
        return _result(schedule, f'Semester "{term}" is already of type "{new_type}"', {"term": old["term"], "type": new_type}, changed=False)

    warning = ""
    lost = len(old.get("courses") or []) if is_academic(old) else 0
    if new_type == COOP and lost:
        warning = f" Warning: {lost} course(s) were removed."
    semesters = list(schedule["semesters"])
    semesters[idx] = _blank_semester(old["term"], new_type, coop_number)
    if old.get("status"):
        semesters[idx]["status"] = old["status"]

    data = {"term": old["term"], "old_type": old_type, "new_type": new_type, "courses_removed": lost}
    if new_type == COOP:
        data["coop_number"] = semesters[idx]["coopNumber"]
    return _result(_updated(schedule, semesters), f'Changed "{old["term"]}" from {old_type} to {new_type}.{warning}', data)


def fill_semester_to_credits(schedule: dict, term: str, target_credits=None, elective_pool=None) -> dict:
    """
    Append pool electives to a semester until it reaches target_credits.
    Pool courses whose code already appears anywhere in the plan are skipped.
    """
    target = int(target_credits or DEFAULT_FILL_TARGET)
    pool = DEFAULT_ELECTIVE_POOL if elective_pool is None else elective_pool
    idx = _require_semester(schedule, term)
    semester = schedule["semesters"][idx]
    if is_coop(semester):
        raise ScheduleToolError(f'Cannot fill co-op semester "{term}"')

    current = semester_credits(semester)
    if current >= target:
        return _result(
            schedule,
            f"{semester['term']} already has {current} credits (target: {target})",
            {"current_credits": current, "target_credits": target, "added": []},
            changed=False,
        )

    existing = {
        normalize_course_code(c.get("code"))
        for s in schedule["semesters"] if is_academic(s)
        for c in s.get("courses") or []
    }
    added = []
    new_credits = current
    for elective in pool:
        if new_credits >= target:
            break
        code = normalize_course_code(elective["code"])
        if code in existing:
            continue
        added.append(dict(elective))
        existing.add(code)
        new_credits += course_credits(elective)

    if not added:
        raise ScheduleToolError("No available electives to add (all already in schedule)")

    semesters = list(schedule["semesters"])
    semesters[idx] = {**semester, "courses": list(semester.get("courses") or []) + added}
    added_str = ", ".join(f"{c['code']} ({c['credits']}cr)" for c in added)
    return _result(
        _updated(schedule, semesters),
        f"Added {len(added)} elective(s) to {semester['term']}: {added_str}. Now at {new_credits} credits.",
        {
            "previous_credits": current,
            "new_credits": new_credits,
            "target_credits": target,
            "added": [c["code"] for c in added],
        },
    )


# ---------------------------------------------------------------------------
# Read-only queries
# ---------------------------------------------------------------------------

def get_schedule(schedule: dict) -> dict:
    return _result(None, f"Retrieved schedule with {len(schedule.get('semesters') or [])} semester(s)", {"schedule": schedule}, changed=False)


def get_semester(schedule: dict, term: str) -> dict:
    idx = _require_semester(schedule, term)
    return _result(None, f"Retrieved details for {schedule['semesters'][idx]['term']}", schedule["semesters"][idx], changed=False)


def get_credit_summary(schedule: dict, target_credits=None) -> dict:
    total = 0
    academic_count = 0
    coop_count = 0
    lightest = None
    heaviest = None
    for semester in schedule.get("semesters") or []:
        if is_coop(semester):
            coop_count += 1
            continue
        academic_count += 1
        credits = semester_credits(semester)
        total += credits
        if lightest is None or credits < lightest[1]:
            lightest = (semester.get("term", ""), credits)
        if heaviest is None or credits > heaviest[1]:
            heaviest = (semester.get("term", ""), credits)

    target = int(target_credits or schedule.get("totalCredits") or DEFAULT_SUMMARY_TARGET)
    remaining = target - total
    if total > target:
        status = f"OVER-CREDITED by {total - target}. Remove courses, do not add more."
        message = f"Schedule has {total}/{target} credits. Do not add any courses. Remove {total - target} credits."
    elif total == target:
        status = f"AT TARGET ({total}/{target}). Do not add more courses."
        message = f"Schedule has {total}/{target} credits. Do not add any courses."
    else:
        status = f"Need {remaining} more credits to reach target of {target}."
        message = f"Schedule has {total}/{target} credits. You may add up to {remaining} more credits."

    data = {
        "current_credits": total,
        "target_credits": target,
        "credits_remaining": max(0, remaining),
        "credits_over": max(0, total - target),
        "can_add_courses": remaining > 0,
        "status": status,
        "academic_semesters": academic_count,
        "coop_semesters": coop_count,
        "avg_credits_per_semester": round(total / academic_count, 1) if academic_count else 0,
        "lightest_semester": f"{lightest[0]} ({lightest[1]} credits)" if lightest else "N/A",
        "heaviest_semester": f"{heaviest[0]} ({heaviest[1]} credits)" if heaviest else "N/A",
    }
    return _result(None, message, data, changed=False)


def find_light_semesters(schedule: dict, min_credits=None) -> dict:
    threshold = int(min_credits or DEFAULT_LIGHT_THRESHOLD)
    light = []
    for semester in schedule.get("semesters") or []:
        if not is_academic(semester):
            continue
        credits = semester_credits(semester)
        if credits < threshold:
            light.append({
                "term": semester.get("term", ""),
                "current_credits": credits,
                "course_count": len(semester.get("courses") or []),
                "credits_needed": threshold - credits,
                "courses": [f"{c.get('code', '')} ({course_credits(c)}cr)" for c in semester.get("courses") or []],
            })
    light.sort(key=lambda s: s["credits_needed"], reverse=True)

    if light:
        message = f"Found {len(light)} semester(s) with fewer than {threshold} credits"
    else:
        message = f"All academic semesters have at least {threshold} credits"
    return _result(None, message, {
        "min_credits_threshold": threshold,
        "light_semester_count": len(light),
        "total_credits_needed": sum(s["credits_needed"] for s in light),
        "semesters": light,
    }, changed=False)


def find_courses_in_schedule(schedule: dict, search_term: str) -> dict:
    needle = str(search_term).lower()
    found = []
    for semester in schedule.get("semesters") or []:
        if not is_academic(semester):
            continue
        for course in semester.get("courses") or []:
            if needle in str(course.get("code", "")).lower() or needle in str(course.get("name", "")).lower():
                found.append({
                    "code": course.get("code", ""),
                    "name": course.get("name", ""),
                    "credits": course_credits(course),
                    "term": semester.get("term", ""),
                })

    if found:
        listing = "; ".join(f"{c['code']} ({c['name']}) in {c['term']}" for c in found)
        message = f'Found {len(found)} course(s) matching "{search_term}": {listing}'
    else:
        message = f'No courses found matching "{search_term}"'
    return _result(None, message, {"search_term": search_term, "match_count": len(found), "courses": found}, changed=False)


def count_courses_by_type(schedule: dict) -> dict:
    """Course counts per department prefix, most common first."""
    counts: dict[str, int] = {}
    total = 0
    for semester in schedule.get("semesters") or []:
        if not is_academic(semester):
            continue
        for course in semester.get("courses") or []:
            dept = str(course.get("code", "")).strip().split(" ")[0].upper()
            counts[dept] = counts.get(dept, 0) + 1
            total += 1

    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    breakdown = ", ".join(f"{dept}: {n}" for dept, n in ranked)
    return _result(None, f"{total} courses: {breakdown}", {
        "total_courses": total,
        "department_count": len(ranked),
        "breakdown": breakdown,
        "counts": dict(ranked),
    }, changed=False)


def check_schedule(schedule: dict, school_id: str | None = None, discontinued: dict | None = None) -> dict:
    """Run validation without repairing or trimming the stored plan."""
    result = validate_schedule(
        schedule, school_id=school_id, trim_excess_credits=False, discontinued=discontinued
    )
    issues = result["issues"]
    errors = sum(1 for i in issues if i["severity"] == "error")
    warnings = len(issues) - errors
    summary = "All checks passed!" if not issues else f"Found {errors} error(s) and {warnings} warning(s)"
    return _result(None, summary, {
        "valid": errors == 0,
        "issues": issues,
        "stats": result["stats"],
        "course_count": sum(1 for s in schedule.get("semesters") or [] if is_academic(s) for _ in s.get("courses") or []),
    }, changed=False)


# name -> (function, mutates)
TOOLS = {
    "add_course": (add_course, True),
    "remove_course": (remove_course, True),
    "move_course": (move_course, True),
    "swap_courses": (swap_courses, True),
    "bulk_add_courses": (bulk_add_courses, True),
    "bulk_remove_courses": (bulk_remove_courses, True),
    "add_semester": (add_semester, True),
    "remove_semester": (remove_semester, True),
    "swap_semesters": (swap_semesters, True),
    "set_semester_type": (set_semester_type, True),
    "fill_semester_to_credits": (fill_semester_to_credits, True),
    "get_schedule": (get_schedule, False),
    "get_semester": (get_semester, False),
    "get_credit_summary": (get_credit_summary, False),
    "find_light_semesters": (find_light_semesters, False),
    "find_courses_in_schedule": (find_courses_in_schedule, False),
    "count_courses_by_type": (count_courses_by_type, False),
    "validate_schedule": (check_schedule, False),
}


_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z0-9])")


def _snake(name: str) -> str:
    """'courseCode1' -> 'course_code1', 'toSemester' -> 'to_semester'."""
    return re.sub(r"_(\d)", r"\1", _CAMEL_RE.sub("_", name).lower())


def normalize_tool_name(name: str) -> str:
    """'add-course' / 'addCourse' / 'add_course' -> 'add_course'."""
    return _snake(str(name or "").strip()).replace("-", "_")


def bind_tool_params(fn, params: dict, context: dict | None = None) -> dict:
    """
    Map agent parameters (camelCase or snake_case) onto fn's keyword
    arguments. Unknown keys are ignored; missing required ones raise.
    """
    signature = inspect.signature(fn)
    accepted = [name for name in signature.parameters if name != "schedule"]
    provided = {_snake(k): v for k, v in (params or {}).items()}
    for key, value in (context or {}).items():
        provided.setdefault(key, value)

    kwargs = {}
    missing = []
    for name in accepted:
        value = provided.get(name)
        if value is None or value == "":
            if signature.parameters[name].default is inspect.Parameter.empty:
                missing.append(name)
            continue
        kwargs[name] = value
    if missing:
        raise ScheduleToolError(f"Missing required parameter(s): {', '.join(missing)}")
    return kwargs


def apply_tool(store, schedule_id: str, tool_name: str, params: dict | None = None, **context) -> dict:
    """
    Look up schedule_id, run the named tool, and write the result back when
    the tool mutates and actually changed something. Extra keyword context
    (school_id, elective_pool, discontinued) is offered to tools that accept
    it. The whole cycle runs as one store transaction, so concurrent edits to
    the same schedule are applied one after the other.

    Returns the ToolResult plus the entry's current "version".
    """
    name = normalize_tool_name(tool_name)
    if name not in TOOLS:
        raise ScheduleToolError(f'Unknown tool "{tool_name}"', 404)
    fn, mutates = TOOLS[name]
    if not schedule_id:
        raise ScheduleToolError("scheduleId is required")
    kwargs = bind_tool_params(fn, params, context)

    def run(schedule):
        result = fn(schedule, **kwargs)
        return (result["schedule"] if mutates and result["changed"] else None), result

    outcome = store.transact(schedule_id, run, name)
    if outcome is None:
        raise ScheduleToolError("Schedule not found or expired", 404)
    result, version = outcome
    result["version"] = version
    return result
