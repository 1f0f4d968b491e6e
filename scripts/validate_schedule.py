"""
Offline schedule check.

Runs a saved schedule (plain JSON or a raw agent answer) through the same
normalize + validate pipeline the API uses and prints a PASS/FAIL report.
Importable for tests and runnable as a standalone CLI.

Usage:
    python scripts/validate_schedule.py plan.json
    python scripts/validate_schedule.py plan.json --school-id northeastern --target-credits 128
    cat answer.txt | python scripts/validate_schedule.py - --no-trim --output repaired.json
"""

import argparse
import json
import os
import sys

BACKEND_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backend")
sys.path.insert(0, BACKEND_DIR)

from data_loader import load_data  # noqa: E402
from normalizer import normalize_schedule  # noqa: E402
from validators import validate_schedule  # noqa: E402

DEFAULT_DATA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "data")


def read_answer(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, encoding="utf-8") as fh:
        return fh.read()


def check_answer(raw, school_id=None, target_credits=None, trim=True, discontinued=None) -> dict:
    """normalize + validate; returns the validation result."""
    return validate_schedule(
        normalize_schedule(raw),
        school_id=school_id,
        trim_excess_credits=trim,
        target_credits=target_credits,
        discontinued=discontinued,
    )


def format_report(result: dict, label: str) -> str:
    issues = result["issues"]
    errors = [i for i in issues if i["severity"] == "error"]
    warnings = [i for i in issues if i["severity"] != "error"]
    stats = result["stats"]

    status = "FAIL" if errors else "PASS"
    lines = [
        f"[{status}] {label}: {len(result['schedule']['semesters'])} semester(s), "
        f"{stats['final_credits']} credits (target {stats['target_credits']})"
    ]
    for issue in errors:
        lines.append(f"  [ERROR] {_where(issue)}{issue['message']}")
    for issue in warnings:
        lines.append(f"  [WARN]  {_where(issue)}{issue['message']}")
    if not issues:
        lines.append("  All checks passed.")
    return "\n".join(lines)


def _where(issue: dict) -> str:
    return f"{issue['semester']}: " if issue.get("semester") else ""


def main(args=None):
    parser = argparse.ArgumentParser(description="Validate a saved schedule or agent answer.")
    parser.add_argument("path", help="Schedule JSON / answer text file, or - for stdin.")
    parser.add_argument("--school-id", type=str, default=None, help="School key for discontinued-course checks.")
    parser.add_argument("--target-credits", type=int, default=None, help="Degree credit target for trimming.")
    parser.add_argument("--no-trim", action="store_true", help="Report excess credits without trimming electives.")
    parser.add_argument("--data-path", type=str, default=DEFAULT_DATA_PATH, help="Reference data directory.")
    parser.add_argument("--output", type=str, default=None, help="Write the repaired schedule here.")
    opts = parser.parse_args(args)

    try:
        raw = read_answer(opts.path)
    except OSError as exc:
        print(f"[ERROR] Cannot read {opts.path}: {exc}", file=sys.stderr)
        return 2

    data = load_data(opts.data_path)
    result = check_answer(
        raw,
        school_id=opts.school_id,
        target_credits=opts.target_credits,
        trim=not opts.no_trim,
        discontinued=data["discontinued_courses"],
    )
    print(format_report(result, "stdin" if opts.path == "-" else opts.path))

    if opts.output:
        with open(opts.output, "w", encoding="utf-8") as fh:
            json.dump(result["schedule"], fh, indent=2)
        print(f"[OK] Wrote repaired schedule to {opts.output}")

    has_errors = any(i["severity"] == "error" for i in result["issues"])
    return 1 if has_errors else 0


if __name__ == "__main__":
    sys.exit(main())
