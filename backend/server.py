import os
import sys
import time
import threading
from collections import defaultdict

# Ensure backend/ is on sys.path so sibling imports work
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv

from data_loader import load_data
from llm_scheduler import generate_validated_schedule
from normalizer import normalize_schedule
from schedule_model import recalculate_semester_credits
from schedule_store import DEFAULT_TTL_SECONDS, ScheduleStore, generate_schedule_id
from schedule_tools import ScheduleToolError, apply_tool
from semesters import SEM_RE, normalize_semester_label
from transcript import group_courses_by_semester, parse_completed_courses, summarize_semester_pattern
from validators import has_quality_issues, validate_schedule

load_dotenv()

API_VERSION = "1.0.0"

# ── Paths ─────────────────────────────────────────────────────────────────────
BACKEND_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BACKEND_DIR)
_DEFAULT_DATA_PATH = os.path.join(PROJECT_ROOT, "data")
_env_data_path = os.environ.get("DATA_PATH")
if not _env_data_path:
    DATA_PATH = _DEFAULT_DATA_PATH
elif not os.path.isabs(_env_data_path):
    DATA_PATH = os.path.join(PROJECT_ROOT, _env_data_path)
else:
    DATA_PATH = _env_data_path

# -- Rate limiting (manual token bucket, 10 generations/min per IP) --------
_RATE_LIMIT_MAX = 10
_RATE_LIMIT_WINDOW = 60  # seconds
_rate_limit_lock = threading.Lock()
_rate_limit_tracker: dict[str, list[float]] = defaultdict(list)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.environ.get(name, "")
    try:
        return max(minimum, float(raw))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name, "")
    try:
        return max(minimum, int(raw))
    except (TypeError, ValueError):
        return default


_SLOW_REQUEST_LOG_MS = _env_float("SLOW_REQUEST_LOG_MS", 750.0, minimum=0.0)
_SCHEDULE_TTL_SECONDS = _env_int("SCHEDULE_TTL_SECONDS", DEFAULT_TTL_SECONDS, minimum=1)


def _check_rate_limit(ip: str) -> bool:
    """Return True if request is allowed, False if rate-limited."""
    now = time.time()
    with _rate_limit_lock:
        timestamps = _rate_limit_tracker[ip]
        _rate_limit_tracker[ip] = [t for t in timestamps if now - t < _RATE_LIMIT_WINDOW]
        if len(_rate_limit_tracker[ip]) >= _RATE_LIMIT_MAX:
            return False
        _rate_limit_tracker[ip].append(now)
        return True


def _error(error_code: str, message: str, status: int, **extra):
    body = {"mode": "error", "error": {"error_code": error_code, "message": message}}
    body.update(extra)
    return jsonify(body), status


def _load_startup_data() -> dict:
    try:
        data = load_data(DATA_PATH)
    except Exception as exc:
        print(f"[FATAL] Failed to load data: {exc}", file=sys.stderr)
        sys.exit(1)
    print(f"[OK] Loaded reference data from {DATA_PATH}")
    return data


# -- Input validation ------------------------------------------------------
def _validate_generate_body(body):
    """Returns (error_code, message) on invalid input, (None, None) on success."""
    if not isinstance(body, dict):
        return "INVALID_INPUT", "Request body must be valid JSON."
    for field in ("school", "major", "startTerm", "graduationTerm"):
        if not str(body.get(field) or "").strip():
            return "INVALID_INPUT", f"'{field}' is required."
    for field in ("startTerm", "graduationTerm"):
        val = normalize_semester_label(str(body[field]))
        if not SEM_RE.match(val):
            return "INVALID_INPUT", f"'{field}' value '{body[field]}' is not a valid semester (e.g. 'Fall 2025')."
    total = body.get("totalCredits")
    if total not in (None, ""):
        try:
            if not (1 <= int(total) < 200):
                raise ValueError
        except (TypeError, ValueError, OverflowError):
            return "INVALID_INPUT", "totalCredits must be an integer between 1 and 199."
    completed = body.get("completedCourses")
    if completed is not None and not isinstance(completed, (list, str)):
        return "INVALID_INPUT", "completedCourses must be a list of courses or transcript JSON text."
    return None, None


def _optional_target(body):
    """(target, error_message) for the optional targetCredits field."""
    raw = body.get("targetCredits")
    if raw in (None, ""):
        return None, None
    try:
        target = int(raw)
    except (TypeError, ValueError, OverflowError):
        return None, "targetCredits must be a positive integer."
    if target < 1:
        return None, "targetCredits must be a positive integer."
    return target, None


_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def _optional_bool(body, field, default):
    """(value, error_message) for an optional flag sent as a JSON boolean or its string form."""
    raw = body.get(field)
    if raw in (None, ""):
        return default, None
    if isinstance(raw, bool):
        return raw, None
    text = str(raw).strip().lower()
    if text in _TRUE_STRINGS:
        return True, None
    if text in _FALSE_STRINGS:
        return False, None
    return None, f"{field} must be true or false."


def create_app(store: ScheduleStore | None = None, data: dict | None = None) -> Flask:
    """
    Build the Flask app around one ScheduleStore and one reference dataset.
    Both are created from the environment when not supplied.
    """
    app = Flask(__name__)
    store = store if store is not None else ScheduleStore(default_ttl=_SCHEDULE_TTL_SECONDS)
    data = data if data is not None else _load_startup_data()
    app.config["SCHEDULE_STORE"] = store
    app.config["REFERENCE_DATA"] = data

    # -- Security headers ------------------------------------------------------
    @app.before_request
    def _start_request_timer():
        g._request_start_time = time.perf_counter()

    @app.after_request
    def _add_security_headers(response):
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "same-origin"

        started = getattr(g, "_request_start_time", None)
        if started is not None:
            duration_ms = (time.perf_counter() - started) * 1000.0
            if duration_ms >= _SLOW_REQUEST_LOG_MS:
                endpoint = request.endpoint or "unknown"
                print(
                    f"[SLOW] {request.method} {request.path} "
                    f"endpoint={endpoint} status={response.status_code} duration_ms={duration_ms:.1f}"
                )
        return response

    # ── 500 handler ────────────────────────────────────────────────────────────
    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        print(f"[WARN] Unhandled error on {request.method} {request.path}: {e!r}", file=sys.stderr)
        return _error("SERVER_ERROR", "An unexpected server error occurred.", 500)

    # -- Health endpoint --------------------------------------------------------
    @app.route("/health", methods=["GET"])
    def health_endpoint():
        return jsonify({
            "status": "ok",
            "version": API_VERSION,
            "active_schedules": len(store),
        })

    # ── Schedules ──────────────────────────────────────────────────────────────
    @app.route("/api/schedule/validate", methods=["POST"])
    def validate_endpoint():
        body = request.get_json(force=True, silent=True)
        if not isinstance(body, dict) or "schedule" not in body:
            return _error("INVALID_INPUT", "Request body must be JSON with a 'schedule' field.", 400)
        target, err = _optional_target(body)
        if err:
            return _error("INVALID_INPUT", err, 400)
        trim, err = _optional_bool(body, "trimExcessCredits", True)
        if err:
            return _error("INVALID_INPUT", err, 400)

        schedule = normalize_schedule(body["schedule"])
        result = validate_schedule(
            schedule,
            school_id=body.get("schoolId"),
            trim_excess_credits=trim,
            target_credits=target,
            discontinued=data["discontinued_courses"],
        )
        result["has_quality_issues"] = has_quality_issues(schedule)
        return jsonify(result)

    @app.route("/api/schedule/generate", methods=["POST"])
    def generate_endpoint():
        client_ip = request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip()
        if not app.config.get("TESTING") and not _check_rate_limit(client_ip):
            return _error("RATE_LIMITED", "Too many requests. Please wait before generating again.", 429)

        body = request.get_json(force=True, silent=True)
        err_code, err_msg = _validate_generate_body(body)
        if err_code:
            return _error(err_code, err_msg, 400)

        transcript_data = None
        if body.get("completedCourses"):
            try:
                transcript_data = group_courses_by_semester(parse_completed_courses(body["completedCourses"]))
            except ValueError as exc:
                return _error("INVALID_INPUT", str(exc), 400)

        total = body.get("totalCredits")
        try:
            result = generate_validated_schedule(
                str(body["school"]).strip(),
                str(body["major"]).strip(),
                normalize_semester_label(body["startTerm"]),
                normalize_semester_label(body["graduationTerm"]),
                school_id=body.get("schoolId"),
                degree=body.get("degree") or "BS",
                total_credits=int(total) if total not in (None, "") else None,
                preferences=body.get("preferences"),
                transcript_data=transcript_data,
                discontinued=data["discontinued_courses"],
            )
        except RuntimeError as exc:
            print(f"[WARN] Schedule generation unavailable: {exc}", file=sys.stderr)
            return _error("LLM_UNAVAILABLE", "Schedule generation is not configured.", 503)

        schedule = result["schedule"]
        if not schedule["semesters"]:
            return _error("GENERATION_FAILED", "Failed to generate a complete schedule. Please try again.", 502)

        schedule["studentContext"] = {
            "major": str(body["major"]).strip(),
            "preferences": body.get("preferences") or "",
            "completedCoops": transcript_data["completed_coops"] if transcript_data else 0,
        }
        schedule_id = generate_schedule_id()
        store.store(schedule_id, schedule)
        return jsonify({
            "scheduleId": schedule_id,
            "schedule": schedule,
            "issues": result["issues"],
            "stats": result["stats"],
        })

    @app.route("/api/schedule", methods=["POST"])
    def store_endpoint():
        body = request.get_json(force=True, silent=True)
        if not isinstance(body, dict) or "schedule" not in body:
            return _error("INVALID_INPUT", "Request body must be JSON with a 'schedule' field.", 400)
        ttl = body.get("ttlSeconds")
        try:
            ttl = float(ttl) if ttl not in (None, "") else None
        except (TypeError, ValueError):
            return _error("INVALID_INPUT", "ttlSeconds must be a positive number.", 400)
        if ttl is not None and ttl <= 0:
            return _error("INVALID_INPUT", "ttlSeconds must be a positive number.", 400)

        schedule = normalize_schedule(body["schedule"])
        schedule_id = body.get("scheduleId") or generate_schedule_id()
        store.store(schedule_id, schedule, ttl)
        return jsonify({"scheduleId": schedule_id, "version": 1, "schedule": schedule}), 201

    @app.route("/api/schedule/<schedule_id>", methods=["GET"])
    def get_schedule_endpoint(schedule_id):
        entry = store.get_with_meta(schedule_id)
        if entry is None:
            return _error("NOT_FOUND", "Schedule not found or expired.", 404)
        return jsonify({
            "scheduleId": schedule_id,
            "schedule": entry["schedule"],
            "version": entry["version"],
            "lastUpdatedBy": entry["last_updated_by"],
        })

    @app.route("/api/schedule/<schedule_id>/last-update", methods=["GET"])
    def last_update_endpoint(schedule_id):
        last = store.get_last_update(schedule_id)
        if last is None:
            return _error("NOT_FOUND", "Schedule not found or expired.", 404)
        return jsonify(last)

    @app.route("/api/schedule/<schedule_id>", methods=["DELETE"])
    def delete_schedule_endpoint(schedule_id):
        if not store.delete(schedule_id):
            return _error("NOT_FOUND", "Schedule not found or expired.", 404)
        return jsonify({"deleted": True, "scheduleId": schedule_id})

    @app.route("/api/schedule/<schedule_id>/recalculate", methods=["POST"])
    def recalculate_endpoint(schedule_id):
        def recalculate(schedule):
            schedule = recalculate_semester_credits(schedule)
            return schedule, schedule

        outcome = store.transact(schedule_id, recalculate, "recalculate")
        if outcome is None:
            return _error("NOT_FOUND", "Schedule not found or expired.", 404)
        schedule, version = outcome
        return jsonify({"scheduleId": schedule_id, "schedule": schedule, "version": version})

    # ── Agent tools ────────────────────────────────────────────────────────────
    @app.route("/api/tools/<tool_name>", methods=["POST"])
    def tool_endpoint(tool_name):
        body = request.get_json(force=True, silent=True)
        if not isinstance(body, dict):
            return _error("INVALID_INPUT", "Request body must be valid JSON.", 400)
        # Agent envelope: {tool_name, parameters: {...}, request_id}; flat params also accepted.
        params = body.get("parameters") if isinstance(body.get("parameters"), dict) else body
        schedule_id = params.get("scheduleId") or body.get("scheduleId")

        try:
            result = apply_tool(
                store,
                schedule_id,
                tool_name,
                params,
                elective_pool=data["elective_pool"],
                discontinued=data["discontinued_courses"],
            )
        except ScheduleToolError as exc:
            code = "NOT_FOUND" if exc.status_code == 404 else "TOOL_ERROR"
            return _error(code, exc.message, exc.status_code, success=False, data=exc.data)

        response = {
            "success": True,
            "message": result["message"],
            "data": result["data"],
            "version": result["version"],
        }
        if result["schedule"] is not None:
            response["schedule"] = result["schedule"]
        return jsonify(response)

    # ── Transcript ─────────────────────────────────────────────────────────────
    @app.route("/api/transcript/group", methods=["POST"])
    def transcript_group_endpoint():
        body = request.get_json(force=True, silent=True)
        if body is None:
            return _error("INVALID_INPUT", "Request body must be valid JSON.", 400)
        raw = body
        if isinstance(body, dict):
            raw = body.get("courses", body.get("text", body))
        try:
            courses = parse_completed_courses(raw)
        except ValueError as exc:
            return _error("INVALID_INPUT", str(exc), 400)

        transcript_data = group_courses_by_semester(courses)
        transcript_data["semester_pattern"] = summarize_semester_pattern(transcript_data)
        return jsonify(transcript_data)

    # -- API catch-all (404 for unknown /api/* routes) -------------------
    @app.route("/api/<path:rest>", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
    def api_catch_all(rest):
        return _error("NOT_FOUND", f"/api/{rest} not found", 404)

    return app


if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
