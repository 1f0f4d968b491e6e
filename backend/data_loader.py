import os
import sys

import pandas as pd

from schedule_model import normalize_course_code


DISCONTINUED_FILE = "discontinued_courses.csv"
ELECTIVE_POOL_FILE = "elective_pool.csv"

# Courses removed from a school's catalog. Used when the CSV is absent.
DEFAULT_DISCONTINUED_COURSES: dict[str, list[str]] = {
    "northeastern": [
        "CS 2500",  # replaced by CS 2000 + CS 2001
        "CS 2510",  # replaced by CS 2100 + CS 2101
        "CS 2511",
        "CS 3500",  # replaced by CS 3100 + CS 3101
        "CS 3501",
    ],
}

# Broad intro electives used to pad a light semester.
DEFAULT_ELECTIVE_POOL: list[dict] = [
    {"code": "ECON 1115", "name": "Principles of Macroeconomics", "credits": 4},
    {"code": "PHIL 1101", "name": "Introduction to Philosophy", "credits": 4},
    {"code": "PSYC 1101", "name": "Introduction to Psychology", "credits": 4},
    {"code": "SOCL 1101", "name": "Introduction to Sociology", "credits": 4},
    {"code": "POLS 1150", "name": "U.S. Politics", "credits": 4},
    {"code": "HIST 1150", "name": "Global Social Movements", "credits": 4},
    {"code": "COMM 1112", "name": "Public Speaking", "credits": 4},
    {"code": "MUSC 1201", "name": "Music Theory", "credits": 4},
    {"code": "ANTH 1101", "name": "Introduction to Anthropology", "credits": 4},
    {"code": "ENVR 1101", "name": "Environmental Science", "credits": 4},
]


def _read_csv(path: str) -> pd.DataFrame | None:
    if not os.path.isfile(path):
        return None
    return pd.read_csv(path, dtype=str).fillna("")


def _load_discontinued(df: pd.DataFrame) -> dict[str, list[str]]:
    """school_id,course_code rows -> {school_id: [normalized codes]}."""
    missing = {"school_id", "course_code"} - set(df.columns)
    if missing:
        raise ValueError(f"{DISCONTINUED_FILE} is missing columns: {sorted(missing)}")

    df = df.copy()
    df["school_id"] = df["school_id"].astype(str).str.strip().str.lower()
    df["course_code"] = df["course_code"].map(normalize_course_code)
    df = df[(df["school_id"] != "") & (df["course_code"] != "")]

    out: dict[str, list[str]] = {}
    for school_id, group in df.groupby("school_id", sort=True):
        out[school_id] = list(dict.fromkeys(group["course_code"].tolist()))
    return out


def _load_elective_pool(df: pd.DataFrame) -> list[dict]:
    missing = {"code", "name", "credits"} - set(df.columns)
    if missing:
        raise ValueError(f"{ELECTIVE_POOL_FILE} is missing columns: {sorted(missing)}")

    df = df.copy()
    df["code"] = df["code"].astype(str).str.strip()
    df["name"] = df["name"].astype(str).str.strip()
    df["credits"] = pd.to_numeric(df["credits"], errors="coerce")

    invalid = df[df["credits"].isna() | (df["code"] == "")]
    if len(invalid) > 0:
        print(
            f"[WARN] {len(invalid)} elective pool row(s) have no code or non-numeric credits; skipped",
            file=sys.stderr,
        )
    df = df.drop(invalid.index)
    return [
        {"code": row["code"], "name": row["name"], "credits": int(row["credits"])}
        for _, row in df.iterrows()
    ]


def load_data(data_path: str) -> dict:
    """
    Load reference tables from a directory of CSVs.

    Either file may be absent; the built-in tables are used instead. Malformed
    files raise so a bad deploy fails at startup rather than mid-request.
    """
    discontinued = DEFAULT_DISCONTINUED_COURSES
    elective_pool = DEFAULT_ELECTIVE_POOL

    discontinued_df = _read_csv(os.path.join(data_path, DISCONTINUED_FILE))
    if discontinued_df is not None:
        discontinued = _load_discontinued(discontinued_df)
        print(f"[INFO] Discontinued courses source: {DISCONTINUED_FILE} ({len(discontinued)} school(s))")
    else:
        print("[INFO] Discontinued courses source: built-in table")

    pool_df = _read_csv(os.path.join(data_path, ELECTIVE_POOL_FILE))
    if pool_df is not None:
        elective_pool = _load_elective_pool(pool_df)
        print(f"[INFO] Elective pool source: {ELECTIVE_POOL_FILE} ({len(elective_pool)} course(s))")
    else:
        print("[INFO] Elective pool source: built-in table")

    seen: set[str] = set()
    duplicates = []
    for course in elective_pool:
        key = normalize_course_code(course["code"])
        if key in seen:
            duplicates.append(key)
        seen.add(key)
    if duplicates:
        print(f"[WARN] {len(duplicates)} duplicate elective pool code(s): {sorted(set(duplicates))}")

    return {
        "discontinued_courses": discontinued,
        "elective_pool": elective_pool,
    }
