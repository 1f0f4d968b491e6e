import json

from normalizer import (
    PARSE_STRATEGIES,
    normalize_schedule,
    normalize_warnings,
    parse_brace_scan,
    parse_direct_shape,
    parse_fenced_json,
    parse_field_coercion,
    parse_schedule_markdown,
    scan_balanced_object,
    strip_code_fences,
)
from schedule_builders import academic, coop, course, plan


def _sample():
    return plan([
        academic("Fall 2025", [course("CS 1800"), course("CS 2500")]),
        coop("Summer 2026"),
    ])


class TestStrategyOrder:
    def test_names(self):
        assert [name for name, _ in PARSE_STRATEGIES] == [
            "direct_shape", "fenced_json", "brace_scan", "field_coercion",
        ]


class TestDirectShape:
    def test_accepts_dict(self):
        raw = _sample()
        assert parse_direct_shape(raw) is raw

    def test_rejects_missing_school(self):
        raw = _sample()
        raw["school"] = ""
        assert parse_direct_shape(raw) is None

    def test_unwraps_answer_envelope(self):
        envelope = {"answer": json.dumps(_sample())}
        assert parse_direct_shape(envelope)["school"] == "Northeastern University"


class TestFencedJson:
    def test_plain_json_string(self):
        assert parse_fenced_json(json.dumps(_sample()))["major"] == "Computer Science"

    def test_fenced(self):
        raw = "```json\n" + json.dumps(_sample()) + "\n```"
        assert parse_fenced_json(raw) is not None

    def test_non_string(self):
        assert parse_fenced_json(_sample()) is None

    def test_strip_code_fences_unterminated(self):
        assert strip_code_fences("```json\n{\"a\": 1}") == '{"a": 1}'


class TestBraceScan:
    def test_object_in_prose(self):
        raw = "Here is your plan:\n" + json.dumps(_sample()) + "\nGood luck!"
        parsed = parse_brace_scan(raw)
        assert parsed["school"] == "Northeastern University"

    def test_uses_last_school_object(self):
        first = dict(_sample(), major="Draft")
        second = dict(_sample(), major="Final")
        raw = f"draft: {json.dumps(first)} final: {json.dumps(second)}"
        assert parse_brace_scan(raw)["major"] == "Final"

    def test_balanced_scan_ignores_braces_in_strings(self):
        text = '{"school": "a } b", "x": {"y": 1}} trailing'
        assert scan_balanced_object(text, 0) == '{"school": "a } b", "x": {"y": 1}}'

    def test_unclosed_object(self):
        assert scan_balanced_object('{"school": "x"', 0) is None


class TestFieldCoercion:
    def test_semesters_as_json_string(self):
        raw = _sample()
        raw["semesters"] = json.dumps(raw["semesters"])
        parsed = parse_field_coercion(raw)
        assert isinstance(parsed["semesters"], list)
        assert parsed["semesters"][0]["term"] == "Fall 2025"

    def test_semesters_string_with_trailing_comma(self):
        raw = _sample()
        raw["semesters"] = json.dumps(raw["semesters"]) + ","
        assert len(parse_field_coercion(raw)["semesters"]) == 2

    def test_courses_as_json_string(self):
        raw = _sample()
        raw["semesters"][0]["courses"] = json.dumps(raw["semesters"][0]["courses"])
        parsed = parse_field_coercion(raw)
        assert parsed["semesters"][0]["courses"][0]["code"] == "CS 1800"

    def test_not_schedule_like(self):
        assert parse_field_coercion({"foo": 1}) is None


class TestMarkdownOutline:
    MARKDOWN = "\n".join([
        "**Year 1**",
        "- Fall 2025 (16 credits):",
        "  - CS 1800: Discrete Structures (4)",
        "  - CS 2500: Fundamentals of Computer Science 1 (4)",
        "  - General Elective (4)",
        "- **Summer 2026: Co-op 1**",
        "- Spring 2026 (4 credits):",
        "  - MATH 1341: Calculus 1 (4)",
    ])

    def test_parses_semesters(self):
        sems = parse_schedule_markdown(self.MARKDOWN)
        assert [s["term"] for s in sems] == ["Fall 2025", "Summer 2026", "Spring 2026"]
        assert sems[1] == {"term": "Summer 2026", "type": "coop", "coopNumber": 1}

    def test_generic_line_becomes_elective_slot(self):
        fall = parse_schedule_markdown(self.MARKDOWN)[0]
        assert fall["courses"][-1] == {"code": "ELEC", "name": "General Elective", "credits": 4}
        assert fall["totalCredits"] == 12

    def test_semesters_markdown_field(self):
        raw = dict(_sample(), semesters=self.MARKDOWN)
        result = normalize_schedule(raw)
        assert len(result["semesters"]) == 3


class TestNormalizeSchedule:
    def test_never_raises_on_garbage(self):
        for raw in (None, 42, "not json at all", ["a"], {"foo": "bar"}):
            result = normalize_schedule(raw)
            assert result["semesters"] == []
            assert len(result["warnings"]) == 1

    def test_coop_spellings(self):
        raw = _sample()
        raw["semesters"][1]["type"] = "Co-op"
        assert normalize_schedule(raw)["semesters"][1]["type"] == "coop"

    def test_coop_with_courses_becomes_academic(self):
        raw = _sample()
        raw["semesters"][1] = {"term": "Summer 2026", "type": "coop", "courses": [course("CS 3000")]}
        assert normalize_schedule(raw)["semesters"][1]["type"] == "academic"

    def test_string_credits_coerced(self):
        raw = _sample()
        raw["semesters"][0]["courses"][0]["credits"] = "4"
        raw["totalCredits"] = "128"
        result = normalize_schedule(raw)
        assert result["semesters"][0]["courses"][0]["credits"] == 4
        assert result["totalCredits"] == 128

    def test_missing_total_uses_academic_sum(self):
        raw = _sample()
        del raw["totalCredits"]
        assert normalize_schedule(raw)["totalCredits"] == 8

    def test_declared_semester_total_kept(self):
        raw = _sample()
        raw["semesters"][0]["totalCredits"] = 99
        assert normalize_schedule(raw)["semesters"][0]["totalCredits"] == 99

    def test_options_list_joined(self):
        raw = _sample()
        raw["semesters"][0]["courses"].append(
            {"code": "ELECTIVE", "name": "Humanities", "credits": 4, "options": ["PHIL 1101", "HIST 1150"]}
        )
        result = normalize_schedule(raw)
        assert result["semesters"][0]["courses"][-1]["options"] == "PHIL 1101, HIST 1150"

    def test_degree_default(self):
        raw = _sample()
        raw["degree"] = ""
        assert normalize_schedule(raw)["degree"] == "BS"

    def test_non_finite_credits_become_zero(self):
        raw = _sample()
        raw["semesters"][0]["courses"][0]["credits"] = float("nan")
        raw["semesters"][0]["courses"][1]["credits"] = float("inf")
        result = normalize_schedule(raw)
        assert [c["credits"] for c in result["semesters"][0]["courses"]] == [0, 0]

    def test_non_finite_credits_in_json_text(self):
        raw = _sample()
        raw["semesters"][0]["courses"][0]["credits"] = float("inf")
        raw["semesters"][0]["totalCredits"] = float("nan")
        result = normalize_schedule("```json\n" + json.dumps(raw) + "\n```")
        fall = result["semesters"][0]
        assert fall["courses"][0]["credits"] == 0
        assert fall["totalCredits"] == 4

    def test_non_finite_plan_total_uses_default(self):
        raw = _sample()
        raw["totalCredits"] = float("nan")
        assert normalize_schedule(raw)["totalCredits"] == 128

    def test_non_list_courses_dropped(self):
        raw = _sample()
        raw["semesters"][0]["courses"] = 5
        fall = normalize_schedule(raw)["semesters"][0]
        assert fall["type"] == "academic"
        assert fall["courses"] == []

    def test_non_list_semesters(self):
        raw = _sample()
        raw["semesters"] = 7
        assert normalize_schedule(raw)["semesters"] == []

    def test_out_of_range_credits_logged(self, capsys):
        raw = _sample()
        raw["semesters"][0]["courses"][0]["credits"] = 12
        result = normalize_schedule(raw)
        assert result["semesters"][0]["courses"][0]["credits"] == 12
        assert "[NORMALIZE] Course 'CS 1800' has 12 credits (expected 1-6)" in capsys.readouterr().out

    def test_in_range_credits_not_logged(self, capsys):
        normalize_schedule(_sample())
        assert "credits (expected" not in capsys.readouterr().out


class TestNormalizeWarnings:
    def test_bulleted_block(self):
        assert normalize_warnings("- one\n- two\n3. three") == ["one", "two", "three"]

    def test_json_array_string(self):
        assert normalize_warnings('["a", "b"]') == ["a", "b"]

    def test_empty(self):
        assert normalize_warnings(None) == []
