import json

SYSTEM_PROMPT = """You are a university degree-planning assistant.
You will receive a student's school, major, and timeline, and sometimes a summary
of coursework they have already completed.

Your job:
1. Lay out every remaining semester from the start term through graduation
2. Use real catalog course codes (e.g. "CS 1800") wherever the requirement is a specific course
3. Use the code "ELECTIVE" only for genuinely flexible slots, and list 2-3 example
   courses in that course's "options" field
4. Keep every academic semester full-time: at least 4 main courses and 16-18 credits
5. Never repeat a course code anywhere in the plan

Output ONLY a valid JSON object. No markdown. No prose outside the JSON.

Schema (output exactly this structure):
{
  "school": "...",
  "major": "...",
  "degree": "BS",
  "startTerm": "Fall 2025",
  "graduationTerm": "Spring 2029",
  "totalCredits": 128,
  "semesters": [
    {"term": "Fall 2025", "type": "academic", "totalCredits": 16,
     "courses": [{"code": "CS 1800", "name": "Discrete Structures", "credits": 4}]},
    {"term": "Summer 2027", "type": "coop", "coopNumber": 1}
  ],
  "warnings": ["..."],
  "sourceUrl": "..."
}"""


def format_semester_pattern(pattern: dict | None) -> str:
    """Load guidance block; falls back to generic full-time rules without history."""
    if not pattern:
        return "\n".join([
            "Full-time requirements for each planned semester:",
            "- At least 4 main courses (3+ credits each)",
            "- 15-17 total credits",
            "- Labs/seminars (1-2 credits) are additional",
        ])

    avg = pattern["avg_credits_per_semester"]
    lines = [
        "Student's established semester pattern (match it):",
        f"- {avg} credits per semester",
        f"- {pattern['avg_main_courses_per_semester']} main courses "
        f"({pattern['typical_main_course_credits']}+ credits each)",
        "- Labs and seminars (1-2 credits) are additional",
        "",
        "Recent semesters:",
    ]
    for sample in pattern.get("sample_semesters", []):
        lines.append(
            f"- {sample['term']}: {sample['main_course_count']} main courses, {sample['total_credits']} credits"
        )
    lines.append("")
    lines.append(
        f"Each planned semester must have at least {pattern['min_main_courses']} main courses "
        f"and {avg - 2}-{avg + 2} total credits."
    )
    return "\n".join(lines)


def build_prompt(
    school: str,
    major: str,
    start_term: str,
    graduation_term: str,
    degree: str = "BS",
    total_credits: int | None = None,
    preferences: str | None = None,
    transcript_data: dict | None = None,
    semester_pattern: dict | None = None,
) -> str:
    """
    Builds the user message sent to the LLM.
    With transcript data, only the remaining semesters are requested; completed
    work is summarized so the model neither repeats nor reschedules it.
    """
    context_lines = [
        f"School: {school}",
        f"Major: {major}",
        f"Degree: {degree}",
        f"Graduation term: {graduation_term}",
    ]
    if total_credits:
        context_lines.append(f"Degree credit requirement: {total_credits}")
    if preferences:
        context_lines.append(f"Student preferences: {preferences}")

    if transcript_data and transcript_data.get("completed_semesters"):
        completed_codes = [
            c.get("code", "")
            for sem in transcript_data["completed_semesters"]
            for c in sem.get("courses", [])
        ] + [c.get("code", "") for c in transcript_data.get("transfer_credits", [])]
        prior = transcript_data.get("total_completed_credits", 0) + transcript_data.get("total_transfer_credits", 0)
        next_term = transcript_data.get("next_semester") or start_term
        context_lines.append(f"Already completed ({prior} credits, do NOT schedule again): {', '.join(completed_codes)}")
        context_lines.append(f"Completed co-ops: {transcript_data.get('completed_coops', 0)}")
        context_lines.append(f"Plan only the remaining semesters, starting with: {next_term}")
        if total_credits:
            context_lines.append(f"Remaining credits to schedule: {max(0, total_credits - prior)}")
    else:
        context_lines.append(f"Start term: {start_term}")

    context_lines.append("")
    context_lines.append(format_semester_pattern(semester_pattern))
    context_lines.append("")
    context_lines.append("Return the complete plan as a single JSON object following the schema.")
    return "\n".join(context_lines)


def build_revision_prompt(schedule: dict, issues: list[dict]) -> str:
    """Follow-up message asking the model to fix the problems validation found."""
    problem_lines = [f"- [{i['type']}] {i['message']}" for i in issues]
    return "\n".join([
        "The schedule below has problems. Fix them and return the corrected plan as a single JSON object.",
        "Problems:",
        *problem_lines,
        "",
        json.dumps(schedule, indent=2),
    ])
