import copy
import threading
import time
import uuid


DEFAULT_TTL_SECONDS = 30 * 60


class ScheduleStore:
    """
    Thread-safe in-memory schedule storage with per-entry expiry.

    Each entry carries a version that starts at 1 and increments on every
    update, plus the name of the tool that last wrote it. Expiry is fixed at
    store() time; updates never extend it. Expired entries are evicted lazily
    by whichever call touches them first.

    Schedules are deep-copied in and out so callers cannot mutate stored state.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL_SECONDS, clock=time.time):
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be positive, got {default_ttl}")
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[str, dict] = {}

    def _live_entry(self, schedule_id: str):
        # Caller holds the lock.
        entry = self._items.get(schedule_id)
        if entry is None:
            return None
        if entry["expires"] <= self._clock():
            del self._items[schedule_id]
            print(f"[STORE] Schedule {schedule_id} expired; evicted")
            return None
        return entry

    def store(self, schedule_id: str, schedule: dict, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        now = self._clock()
        with self._lock:
            self._items[schedule_id] = {
                "schedule": copy.deepcopy(schedule),
                "expires": now + ttl,
                "version": 1,
                "last_modified": now,
                "last_updated_by": None,
            }
        print(f"[STORE] Stored schedule {schedule_id} (ttl={ttl:g}s)")

    def get(self, schedule_id: str) -> dict | None:
        with self._lock:
            entry = self._live_entry(schedule_id)
            return copy.deepcopy(entry["schedule"]) if entry else None

    def _write(self, schedule_id: str, entry: dict, schedule: dict, updated_by: str | None) -> None:
        # Caller holds the lock.
        entry["schedule"] = copy.deepcopy(schedule)
        entry["version"] += 1
        entry["last_modified"] = self._clock()
        entry["last_updated_by"] = updated_by or "unknown"
        print(f"[STORE] Updated schedule {schedule_id} to v{entry['version']} by {entry['last_updated_by']}")

    def update(self, schedule_id: str, schedule: dict, updated_by: str | None = None) -> bool:
        """Replace a live entry and bump its version. False if unknown or expired."""
        with self._lock:
            entry = self._live_entry(schedule_id)
            if entry is None:
                return False
            self._write(schedule_id, entry, schedule, updated_by)
        return True

    def transact(self, schedule_id: str, fn, updated_by: str | None = None):
        """
        Read, transform and write back one entry under the store lock.

        fn receives a private copy of the schedule and returns
        (new_schedule, result); a new_schedule of None leaves the entry as is.
        Returns (result, version), or None if the id is unknown or expired.
        fn must not call back into the store. If it raises, nothing is written.
        """
        with self._lock:
            entry = self._live_entry(schedule_id)
            if entry is None:
                return None
            new_schedule, result = fn(copy.deepcopy(entry["schedule"]))
            if new_schedule is not None:
                self._write(schedule_id, entry, new_schedule, updated_by)
            return result, entry["version"]

    def get_last_update(self, schedule_id: str) -> dict | None:
        """{"version", "tool"} for change polling, without copying the schedule."""
        with self._lock:
            entry = self._live_entry(schedule_id)
            if entry is None:
                return None
            return {"version": entry["version"], "tool": entry["last_updated_by"]}

    def get_version(self, schedule_id: str) -> int | None:
        with self._lock:
            entry = self._live_entry(schedule_id)
            return entry["version"] if entry else None

    def get_with_meta(self, schedule_id: str) -> dict | None:
        with self._lock:
            entry = self._live_entry(schedule_id)
            if entry is None:
                return None
            return {
                "schedule": copy.deepcopy(entry["schedule"]),
                "version": entry["version"],
                "last_modified": entry["last_modified"],
                "last_updated_by": entry["last_updated_by"],
                "expires": entry["expires"],
            }

    def get_student_context(self, schedule_id: str) -> dict | None:
        """Stored studentContext, falling back to just the plan's major."""
        schedule = self.get(schedule_id)
        if schedule is None:
            return None
        context = schedule.get("studentContext")
        if isinstance(context, dict) and context:
            return context
        return {"major": schedule.get("major", "")}

    def delete(self, schedule_id: str) -> bool:
        with self._lock:
            return self._items.pop(schedule_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def generate_schedule_id() -> str:
    return str(uuid.uuid4())
