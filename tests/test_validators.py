import copy

import pytest
from validators import (
    calculate_main_course_threshold,
    elective_removal_priority,
    has_quality_issues,
    is_discontinued_course,
    is_placeholder_course,
    is_valid_course_code,
    resolve_target_credits,
    trim_excess_electives,
    validate_schedule,
)
from schedule_builders import academic, coop, course, full_semester, plan
from schedule_model import normalize_course_code


def _issues(result, issue_type):
    return [i for i in result["issues"] if i["type"] == issue_type]


def _over_target_plan():
    """
    152 computed credits against a 128 target: eight semesters of three
    4-credit required courses, six Free Elective slots and eight Concentration
    Elective slots.
    """
    semesters = []
    for i, term in enumerate([
        "Fall 2025", "Spring 2026", "Fall 2026", "Spring 2027",
        "Fall 2027", "Spring 2028", "Fall 2028", "Spring 2029",
    ]):
        courses = [course(f"CS {1000 + 10 * i + j}") for j in range(3)]
        if i < 6:
            courses.append(course("ELECTIVE", name="Free Elective"))
        courses.append(course("ELECTIVE", name="Concentration Elective"))
        semesters.append(academic(term, courses))
    return plan(semesters, total=128)


class TestScenarios:
    def test_case_insensitive_duplicate_removed(self):
        schedule = plan([
            academic("Fall 2025", [
                course("CS 1800", name="Discrete Structures"),
                course("cs 1800", name="Discrete Structures"),
            ]),
        ])
        result = validate_schedule(schedule)
        assert len(_issues(result, "duplicate")) == 1
        assert result["stats"]["duplicates_removed"] == 1
        fall = result["schedule"]["semesters"][0]
        assert [c["code"] for c in fall["courses"]] == ["CS 1800"]
        assert fall["totalCredits"] == 4

    def test_trims_free_electives_before_concentration(self):
        result = validate_schedule(_over_target_plan(), trim_excess_credits=True)
        out = result["schedule"]
        names = [c["name"] for s in out["semesters"] for c in s["courses"]]
        assert "Free Elective" not in names
        assert names.count("Concentration Elective") == 8
        assert out["totalCredits"] == 128
        assert out["totalCredits"] <= 128 + 15
        assert result["stats"]["electives_trimmed"] == 6
        assert result["stats"]["actual_credits"] == 152
        overage = _issues(result, "credit_overage")
        assert any("Trimmed 6 elective(s)" in i["message"] for i in overage)

    def test_light_non_final_semester(self):
        schedule = plan([
            full_semester("Fall 2025", "CS", 2000, count=3),
            full_semester("Spring 2026", "CS", 3000, count=4),
        ])
        result = validate_schedule(schedule)
        violations = _issues(result, "full_time_violation")
        underages = _issues(result, "credit_underage")
        assert len(violations) == 1 and violations[0]["semester"] == "Fall 2025"
        assert len(underages) == 1 and underages[0]["semester"] == "Fall 2025"


class TestProperties:
    @pytest.fixture
    def messy(self):
        return plan([
            academic("Fall 2025", [
                course("CS 1800"), course("CS 1802", 1), course("MATH 1341"), course("cs  1800"),
            ], total=30),
            coop("Summer 2026"),
            academic("Spring 2026", [
                course("MATH 1341"), course("ELECTIVE", name="Free Elective"),
                course("ELECTIVE", name="Free Elective"), course("CS 2500"),
            ]),
            academic("Fall 2026", [course("CS 3000"), course("CS 3500")], total=0),
        ])

    def test_idempotent(self, messy):
        once = validate_schedule(messy)
        twice = validate_schedule(once["schedule"])
        assert _issues(twice, "duplicate") == []
        assert _issues(twice, "credit_mismatch") == []

    def test_credit_sums_consistent(self, messy):
        out = validate_schedule(messy)["schedule"]
        academic_sems = [s for s in out["semesters"] if s["type"] == "academic"]
        for sem in academic_sems:
            assert sem["totalCredits"] == sum(c["credits"] for c in sem["courses"])
        assert out["totalCredits"] == sum(s["totalCredits"] for s in academic_sems)

    def test_no_duplicate_specific_codes(self, messy):
        out = validate_schedule(messy)["schedule"]
        codes = [
            normalize_course_code(c["code"])
            for s in out["semesters"] if s["type"] == "academic"
            for c in s["courses"]
            if normalize_course_code(c["code"]) not in ("ELECTIVE", "ELEC")
        ]
        assert len(codes) == len(set(codes))

    def test_electives_never_deduplicated(self, messy):
        out = validate_schedule(messy)["schedule"]
        spring = out["semesters"][2]
        assert [c["code"] for c in spring["courses"]].count("ELECTIVE") == 2

    def test_trim_only_removes_electives(self):
        before = _over_target_plan()
        result = validate_schedule(before)
        required_before = {c["code"] for s in before["semesters"] for c in s["courses"] if c["code"] != "ELECTIVE"}
        required_after = {c["code"] for s in result["schedule"]["semesters"] for c in s["courses"] if c["code"] != "ELECTIVE"}
        assert required_before == required_after
        assert result["schedule"]["totalCredits"] <= result["stats"]["actual_credits"]

    def test_input_not_mutated(self, messy):
        snapshot = copy.deepcopy(messy)
        validate_schedule(messy)
        assert messy == snapshot

    def test_deterministic(self, messy):
        assert validate_schedule(messy) == validate_schedule(messy)


class TestMainCourseThreshold:
    def test_three_credit_school(self):
        schedule = plan([full_semester("Fall 2025", "ENGL", 1000, count=5, credits=3)])
        assert calculate_main_course_threshold(schedule) == 2

    def test_four_credit_school(self):
        schedule = plan([full_semester("Fall 2025", "CS", 1000, count=4)])
        assert calculate_main_course_threshold(schedule) == 3

    def test_labs_and_electives_ignored(self):
        schedule = plan([academic("Fall 2025", [
            course("CS 1800", 3), course("CS 1801", 1), course("CS 1802", 1),
            course("ELECTIVE", 4), course("ELECTIVE", 4), course("ELECTIVE", 4),
        ])])
        assert calculate_main_course_threshold(schedule) == 2

    def test_no_courses_defaults_to_three(self):
        assert calculate_main_course_threshold(plan([])) == 3

    def test_threshold_counts_full_time(self):
        schedule = plan([
            full_semester("Fall 2025", "ENGL", 1000, count=4, credits=3),
            full_semester("Spring 2026", "ENGL", 2000, count=4, credits=3),
        ])
        result = validate_schedule(schedule)
        assert result["stats"]["main_course_threshold"] == 2
        assert _issues(result, "full_time_violation") == []


class TestTargetResolution:
    def test_explicit_target_wins(self):
        assert resolve_target_credits({"totalCredits": 130}, 120) == 120

    def test_plan_total_in_range(self):
        assert resolve_target_credits({"totalCredits": 134}) == 134

    @pytest.mark.parametrize("total", [0, 200, 250, None, "128", True])
    def test_out_of_range_falls_back(self, total):
        assert resolve_target_credits({"totalCredits": total}) == 128


class TestTrimming:
    def test_priority_lookup(self):
        assert elective_removal_priority({"name": "Free Elective"}) == 1
        assert elective_removal_priority({"name": "NUpath Arts"}) == 2
        assert elective_removal_priority({"name": "Technical Elective"}) == 4
        assert elective_removal_priority({"name": "Advanced Writing"}) == 6
        assert elective_removal_priority({"name": "Something Else"}) == 3

    def test_later_semesters_trimmed_first(self):
        semesters = [
            academic(term, [course(f"CS {1000 * (i + 1) + j}") for j in range(3)]
                     + [course("ELECTIVE", name="Free Elective")])
            for i, term in enumerate(["Fall 2025", "Spring 2026", "Fall 2026", "Spring 2027", "Fall 2027"])
        ]
        result = trim_excess_electives(semesters, current_credits=80, target_credits=64, main_course_threshold=3)
        assert result["trimmed_count"] == 4
        assert result["trimmed_credits"] == 16
        assert len(result["semesters"][0]["courses"]) == 4
        assert all(len(s["courses"]) == 3 for s in result["semesters"][1:])
        assert len(semesters[4]["courses"]) == 4

    def test_keeps_three_main_courses(self):
        semesters = [
            academic("Fall 2025", [course("CS 1000"), course("CS 1001"), course("ELECTIVE", name="Free Elective")]),
        ]
        result = trim_excess_electives(semesters, current_credits=200, target_credits=100, main_course_threshold=3)
        assert result["trimmed_count"] == 0
        assert len(result["semesters"][0]["courses"]) == 3

    def test_within_tolerance_untouched(self):
        result = validate_schedule(_over_target_plan(), target_credits=140)
        assert result["stats"]["electives_trimmed"] == 0
        assert result["schedule"]["totalCredits"] == 152

    def test_disabled(self):
        result = validate_schedule(_over_target_plan(), trim_excess_credits=False)
        assert result["stats"]["electives_trimmed"] == 0


class TestCourseChecks:
    def test_invalid_code_flagged(self):
        result = validate_schedule(plan([academic("Fall 2025", [course("BADCODE"), course("ELECTIVE")])]))
        invalid = _issues(result, "invalid_code")
        assert len(invalid) == 1 and invalid[0]["course"] == "BADCODE"

    @pytest.mark.parametrize("code,ok", [
        ("CS 1800", True), ("cs1800", True), ("MATH 1341L", True), ("CS 18", False), ("COMPSCI1 1800", False),
    ])
    def test_code_pattern(self, code, ok):
        assert is_valid_course_code(code) is ok

    def test_discontinued_course_is_error(self):
        schedule = plan([full_semester("Fall 2025", "CS", 2500, count=4)])
        result = validate_schedule(schedule, school_id="northeastern")
        flagged = _issues(result, "discontinued_course")
        assert [i["course"] for i in flagged] == ["CS 2500"]
        assert flagged[0]["severity"] == "error"

    def test_discontinued_requires_school(self):
        assert is_discontinued_course("CS 2500", None) is False

    def test_discontinued_custom_table(self):
        assert is_discontinued_course("ENGW 1111", "Other", {"other": ["ENGW 1111"]})

    def test_placeholder_detected_and_kept(self):
        schedule = plan([academic("Fall 2025", [course("CS 1800", name="TBD"), course("CS 1801", name="Real")])])
        result = validate_schedule(schedule)
        assert len(_issues(result, "placeholder")) == 1
        assert len(result["schedule"]["semesters"][0]["courses"]) == 2

    def test_options_suppress_placeholder(self):
        schedule = plan([academic("Fall 2025", [
            course("ELECTIVE", name="Elective", options="PHIL 1101, HIST 1150"),
        ])])
        assert _issues(validate_schedule(schedule), "placeholder") == []

    @pytest.mark.parametrize("entry", [
        {"code": "CS 3000", "name": "Concentration Course (Placeholder)"},
        {"code": "TBD 1000", "name": "Something"},
        {"code": "NUpath", "name": "NUpath"},
        {"code": "CS 3000", "name": "Khoury Elective 1"},
    ])
    def test_placeholder_patterns(self, entry):
        assert is_placeholder_course(entry)

    def test_real_course_not_placeholder(self):
        assert not is_placeholder_course({"code": "CS 3000", "name": "Algorithms and Data"})


class TestSemesterChecks:
    def test_mismatch_recorded_and_overwritten(self):
        schedule = plan([academic("Fall 2025", [course(f"CS {1000 + j}") for j in range(4)], total=20)])
        result = validate_schedule(schedule)
        assert len(_issues(result, "credit_mismatch")) == 1
        assert result["schedule"]["semesters"][0]["totalCredits"] == 16

    def test_overage(self):
        schedule = plan([
            full_semester("Fall 2025", "CS", 1000, count=6),
            full_semester("Spring 2026", "CS", 2000, count=4),
        ])
        result = validate_schedule(schedule)
        assert [i["semester"] for i in _issues(result, "credit_overage")] == ["Fall 2025"]

    def test_final_semester_allows_twelve(self):
        schedule = plan([
            full_semester("Fall 2025", "CS", 1000, count=4),
            full_semester("Spring 2026", "CS", 2000, count=3),
        ])
        result = validate_schedule(schedule)
        assert _issues(result, "credit_underage") == []
        assert _issues(result, "full_time_violation") == []

    def test_last_semester_is_last_academic(self):
        schedule = plan([
            full_semester("Fall 2025", "CS", 1000, count=4),
            full_semester("Spring 2026", "CS", 2000, count=3),
            coop("Summer 2026"),
        ])
        result = validate_schedule(schedule)
        assert _issues(result, "full_time_violation") == []

    def test_coop_contributes_zero(self):
        schedule = plan([full_semester("Fall 2025", "CS", 1000, count=4), coop("Spring 2026")])
        out = validate_schedule(schedule)["schedule"]
        assert out["totalCredits"] == 16
        assert out["semesters"][1] == coop("Spring 2026")


class TestPlanChecks:
    def test_total_ceiling(self):
        semesters = [
            full_semester(f"Fall {2020 + i}", "CS", 1000 + 10 * i, count=5) for i in range(9)
        ]
        result = validate_schedule(plan(semesters, total=199), trim_excess_credits=False)
        assert result["stats"]["total_credits_exceeded"] is True
        assert any("unusually high" in i["message"] for i in _issues(result, "credit_overage"))

    def test_excessive_electives(self):
        schedule = plan([
            academic("Fall 2025", [course("ELECTIVE", name=f"Slot {i}", options="x") for i in range(6)]),
            academic("Spring 2026", [course("ELECTIVE", name=f"Slot {i}", options="x") for i in range(5)]
                     + [course("CS 1800"), course("CS 2500")]),
        ])
        result = validate_schedule(schedule, trim_excess_credits=False)
        assert len(_issues(result, "excessive_electives")) == 1
        assert result["stats"]["elective_count"] == 11
        assert result["stats"]["specific_course_count"] == 2

    def test_empty_plan(self):
        result = validate_schedule({"semesters": []})
        assert result["schedule"]["semesters"] == []
        assert result["schedule"]["totalCredits"] == 0
        assert len(_issues(result, "missing_data")) == 1
        assert result["stats"]["target_credits"] == 128

    def test_warning_summaries_are_counts(self):
        schedule = plan([
            academic("Fall 2025", [course("CS 1800"), course("CS 1800"), course("CS 1800")]),
        ])
        warnings = validate_schedule(schedule)["schedule"]["warnings"]
        assert "2 duplicate course(s) were removed from your schedule." in warnings

    def test_existing_warnings_preserved(self):
        schedule = plan([full_semester("Fall 2025", "CS", 1000, count=4)])
        schedule["warnings"] = ["Check catalog year"]
        assert validate_schedule(schedule)["schedule"]["warnings"][0] == "Check catalog year"


class TestQualityCheck:
    def test_duplicates_trigger(self):
        schedule = plan([academic("Fall 2025", [course("CS 1800"), course("CS 1800")])])
        assert has_quality_issues(schedule) is True

    def test_two_placeholders_tolerated(self):
        schedule = plan([academic("Fall 2025", [
            course("CS 1800", name="TBD"), course("CS 1801", name="TBD"), course("CS 1802", name="Real"),
        ])])
        assert has_quality_issues(schedule) is False

    def test_three_placeholders_trigger(self):
        schedule = plan([academic("Fall 2025", [
            course("CS 1800", name="TBD"), course("CS 1801", name="TBD"), course("CS 1802", name="TBD"),
        ])])
        assert has_quality_issues(schedule) is True
