import re
from datetime import date


SEM_RE = re.compile(r"^(Spring|Summer|Fall)\s+(?:([12])\s+)?(\d{4})$", re.IGNORECASE)
_YEAR_RE = re.compile(r"(\d{4})")
_COMBINED_RE = re.compile(r"^([A-Za-z]+)\s*/\s*[A-Za-z]+\s+(\d{4})$")

# Spring < Summer (1) < Summer 2 < Fall within a year.
_SEASON_ORDER = {"spring": 0, "summer": 1, "fall": 3}
_UNKNOWN_SEASON_ORDER = 1


def normalize_semester_label(label: str) -> str:
    """
    'fall 2025' -> 'Fall 2025', 'summer 2 2027' -> 'Summer 2 2027',
    'Summer/Fall 2028' -> 'Summer 2028'. Unparseable labels are returned stripped.
    """
    raw = (label or "").strip()
    raw = re.sub(r"\s+", " ", raw)
    combined = _COMBINED_RE.match(raw)
    if combined:
        raw = f"{combined.group(1)} {combined.group(2)}"
    m = SEM_RE.match(raw)
    if not m:
        return raw
    season = m.group(1).capitalize()
    session = m.group(2)
    year = int(m.group(3))
    if session and season == "Summer":
        return f"{season} {session} {year}"
    return f"{season} {year}"


def term_sort_key(term: str) -> int:
    """year * 10 + season order. Unknown season sorts as Summer, missing year as 0."""
    text = (term or "").strip().lower()
    year_match = _YEAR_RE.search(text)
    year = int(year_match.group(1)) if year_match else 0

    order = _UNKNOWN_SEASON_ORDER
    for season, season_order in _SEASON_ORDER.items():
        if season in text:
            order = season_order
            break
    if order == _SEASON_ORDER["summer"] and re.search(r"summer\s+2\b", text):
        order = 2
    return year * 10 + order


def sort_semesters(semesters: list[dict]) -> list[dict]:
    return sorted(semesters, key=lambda s: term_sort_key(str(s.get("term", ""))))


def next_semester(term: str, includes_summer: bool = False) -> str:
    """
    Successor term:
    - Fall YYYY   -> Spring YYYY+1
    - Spring YYYY -> Fall YYYY (Summer YYYY when includes_summer)
    - Summer YYYY -> Fall YYYY
    """
    text = (term or "").lower()
    year_match = _YEAR_RE.search(text)
    year = int(year_match.group(1)) if year_match else date.today().year
    if "fall" in text:
        return f"Spring {year + 1}"
    if "spring" in text:
        return f"Summer {year}" if includes_summer else f"Fall {year}"
    return f"Fall {year}"
