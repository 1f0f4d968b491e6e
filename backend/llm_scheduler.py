import os

from openai import OpenAI
from normalizer import normalize_schedule, strip_code_fences
from prompt_builder import SYSTEM_PROMPT, build_prompt, build_revision_prompt
from transcript import merge_completed_semesters, summarize_semester_pattern
from validators import has_quality_issues, validate_schedule


def get_openai_client() -> OpenAI:
    api_key = os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY not set in environment")
    return OpenAI(api_key=api_key)


def _complete(messages: list[dict], max_tokens: int = 4000) -> str:
    client = get_openai_client()
    model = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
    response = client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        temperature=0.2,
        messages=messages,
    )
    raw = (response.choices[0].message.content or "").strip()
    # Strip markdown code fences if the model wraps the JSON
    return strip_code_fences(raw)


def generate_schedule(
    school: str,
    major: str,
    start_term: str,
    graduation_term: str,
    degree: str = "BS",
    total_credits: int | None = None,
    preferences: str | None = None,
    transcript_data: dict | None = None,
) -> str:
    """Calls OpenAI for a full plan. Returns the raw answer text, unparsed."""
    user_msg = build_prompt(
        school,
        major,
        start_term,
        graduation_term,
        degree=degree,
        total_credits=total_credits,
        preferences=preferences,
        transcript_data=transcript_data,
        semester_pattern=summarize_semester_pattern(transcript_data),
    )
    return _complete([
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_msg},
    ])


def revise_schedule(schedule: dict, issues: list[dict]) -> str:
    """One corrective round trip for a plan that failed the quality check."""
    return _complete([
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_revision_prompt(schedule, issues)},
    ])


def build_schedule_from_answer(
    raw,
    school_id: str | None = None,
    transcript_data: dict | None = None,
    trim_excess_credits: bool = True,
    target_credits: int | None = None,
    discontinued: dict | None = None,
) -> dict:
    """
    normalize -> validate -> merge completed semesters.

    Returns the validation result ({schedule, issues, stats}) with the merged
    schedule in place of the validated one. Validation only sees the planned
    semesters, so completed coursework never counts as a duplicate or gets
    trimmed.
    """
    normalized = normalize_schedule(raw)
    result = validate_schedule(
        normalized,
        school_id=school_id,
        trim_excess_credits=trim_excess_credits,
        target_credits=target_credits,
        discontinued=discontinued,
    )
    result["schedule"] = merge_completed_semesters(result["schedule"], transcript_data)
    return result


def generate_validated_schedule(
    school: str,
    major: str,
    start_term: str,
    graduation_term: str,
    school_id: str | None = None,
    degree: str = "BS",
    total_credits: int | None = None,
    preferences: str | None = None,
    transcript_data: dict | None = None,
    discontinued: dict | None = None,
    allow_revision: bool = True,
) -> dict:
    """
    Full generation pipeline. A plan with quality issues gets one revision
    round; the revision is kept only if it still has semesters.
    """
    raw = generate_schedule(
        school,
        major,
        start_term,
        graduation_term,
        degree=degree,
        total_credits=total_credits,
        preferences=preferences,
        transcript_data=transcript_data,
    )
    first = normalize_schedule(raw)
    if allow_revision and first["semesters"] and has_quality_issues(first):
        print("[INFO] Generated schedule has quality issues; requesting one revision")
        issues = validate_schedule(first, school_id=school_id, trim_excess_credits=False)["issues"]
        revised = normalize_schedule(revise_schedule(first, issues))
        if revised["semesters"]:
            first = revised

    # Remaining-credit target when completed work is merged in afterwards.
    target = None
    if transcript_data and transcript_data.get("completed_semesters") and total_credits:
        prior = transcript_data.get("total_completed_credits", 0) + transcript_data.get("total_transfer_credits", 0)
        target = max(0, total_credits - prior)

    return build_schedule_from_answer(
        first,
        school_id=school_id,
        transcript_data=transcript_data,
        target_credits=target,
        discontinued=discontinued,
    )
