"""
SprintView Scheduler
Resource-leveling scheduler that places tasks on a Mon-Fri working-day timeline.

Core rules:
  - 1 week = 5 working days, weekends never count
  - One owner works on one blocking task at a time (tasks run end-to-end, in input order)
  - Different owners run in parallel
  - Activity types control duration and whether a task blocks its owner
  - Completed tasks can be frozen at their historical dates (final report mode)

Everything here is a pure transformation over in-memory data: each call builds
its own state, nothing is cached between calls, and the "current time" comes
from an injected clock.
"""

import math
from datetime import date, datetime, timedelta

import pandas as pd


# ── Constants ────────────────────────────────────────────────────────────────

WORKING_DAYS_PER_WEEK = 5
DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri"]

ONE_TIME = "ONE_TIME"
CONTINUOUS = "CONTINUOUS"
API_1_DAY = "API_1_DAY"
RECURRING_WEEKLY = "RECURRING_WEEKLY"
MILESTONE = "MILESTONE"
BUFFER = "BUFFER"
PARALLEL_ALLOWED = "PARALLEL_ALLOWED"

ACTIVITY_TYPES = [ONE_TIME, CONTINUOUS, API_1_DAY, RECURRING_WEEKLY,
                  MILESTONE, BUFFER, PARALLEL_ALLOWED]

# Types whose duration ignores the task's estimate
FIXED_DURATIONS = {
    API_1_DAY: 1,
    MILESTONE: 0,
    RECURRING_WEEKLY: 1,  # one day per weekly occurrence
}

DEFAULT_ACTIVITY_TYPE = ONE_TIME
DEFAULT_DURATION = 1

PROGRESS_VALUES = ["not_started", "in_progress", "completed"]
TRUE_STRINGS = ("true", "yes", "y", "1")
UNASSIGNED = "Unassigned"

# Recurrence tags for RECURRING_WEEKLY rows
TEMPLATE = "template"
OCCURRENCE = "occurrence"

DATE_FIELDS = ["start_date", "due_date", "actual_start_date", "actual_end_date"]


# ── Working Calendar ─────────────────────────────────────────────────────────

def norm_date(d):
    """Normalise to midnight datetime for safe comparisons."""
    if isinstance(d, pd.Timestamp):
        d = d.to_pydatetime()
    if isinstance(d, datetime):
        return datetime(d.year, d.month, d.day)
    if isinstance(d, date):
        return datetime(d.year, d.month, d.day)
    raise TypeError(f"norm_date expected datetime, got {type(d).__name__}: {d!r}")


def parse_date(val, context=""):
    """Parse a date from a string (ISO or UK order), datetime, date, or Timestamp."""
    ctx = f" ({context})" if context else ""
    if val is None or (not isinstance(val, (str, date)) and pd.isna(val)):
        raise ValueError(f"Date is blank{ctx}")
    if isinstance(val, (datetime, date, pd.Timestamp)):
        return norm_date(val)
    if isinstance(val, str):
        val = val.strip()
        if not val:
            raise ValueError(f"Date is blank{ctx}")
        # ISO timestamps from JSON payloads carry a time part
        if "T" in val:
            val = val.split("T", 1)[0]
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"):
            try:
                return norm_date(datetime.strptime(val, fmt))
            except ValueError:
                pass
        raise ValueError(f"Cannot parse date{ctx}: {val!r}. Expected YYYY-MM-DD or DD/MM/YYYY")
    raise ValueError(f"Cannot parse date{ctx}: {val!r}")


def format_date(d):
    """ISO date string (YYYY-MM-DD), or None."""
    if d is None:
        return None
    return norm_date(d).strftime("%Y-%m-%d")


def is_working_day(d):
    """Mon-Fri only."""
    return d.weekday() < 5


def next_working_day(d):
    """Snap forward to the first working day on or after d."""
    d = norm_date(d)
    while not is_working_day(d):
        d += timedelta(days=1)
    return d


def previous_working_day(d):
    """Snap back to the last working day on or before d."""
    d = norm_date(d)
    while not is_working_day(d):
        d -= timedelta(days=1)
    return d


def date_to_working_day(d, project_start):
    """1-based working-day index of d: working days from project_start up to
    (not including) d, plus one. Dates before the project start clamp to day 1."""
    current, end = norm_date(project_start), norm_date(d)
    count = 0
    while current < end:
        if is_working_day(current):
            count += 1
        current += timedelta(days=1)
    return max(1, count + 1)


def add_working_days(start, n):
    """Step forward from start, skipping weekends, until ceil(n) working days are added."""
    current = norm_date(start)
    remaining = math.ceil(n) if n > 0 else 0
    while remaining > 0:
        current += timedelta(days=1)
        if is_working_day(current):
            remaining -= 1
    return current


def working_day_to_date(project_start, day):
    """Calendar date of 1-based working day `day`."""
    return add_working_days(project_start, day - 1)


def day_to_week(day):
    return math.ceil(day / WORKING_DAYS_PER_WEEK)


def week_to_day(week):
    """First working day of a 1-based week."""
    return (week - 1) * WORKING_DAYS_PER_WEEK + 1


def get_project_start_date(tasks, clock=None):
    """Earliest explicit start/due date across tasks, else the first of the current month.
    Snapped forward to a working day."""
    clock = clock or datetime.now
    candidates = []
    for t in tasks:
        for field in ("start_date", "due_date"):
            if t.get(field) is not None:
                candidates.append(norm_date(t[field]))
    if candidates:
        start = min(candidates)
    else:
        now = clock()
        start = datetime(now.year, now.month, 1)
    return next_working_day(start)


# ── Activity Policy ──────────────────────────────────────────────────────────

def calculate_duration(task):
    """Working days a task needs, from its activity type."""
    activity_type = task.get("activity_type") or DEFAULT_ACTIVITY_TYPE
    if activity_type in FIXED_DURATIONS:
        return FIXED_DURATIONS[activity_type]
    estimate = task.get("duration_estimate")
    if estimate is None:
        return DEFAULT_DURATION
    return estimate


def effective_duration(duration_days):
    """Whole days used for layout: 0 stays 0, anything else rounds up to at least 1."""
    if duration_days == 0:
        return 0
    return max(1, math.ceil(duration_days))


def can_overlap(activity_type):
    return activity_type == PARALLEL_ALLOWED


def is_task_completed(task):
    return task.get("completed") is True or task.get("progress") == "completed"


def normalize_task(raw):
    """Canonical task record: defaults filled, dates parsed, assignees listed.

    Safe to call on an already-normalised task. No validation happens here; that
    is the caller's job before scheduling.
    """
    task = dict(raw)
    task["name"] = raw.get("name")
    task["owner"] = raw.get("owner")
    task["activity_type"] = raw.get("activity_type") or DEFAULT_ACTIVITY_TYPE
    estimate = raw.get("duration_estimate")
    task["duration_estimate"] = DEFAULT_DURATION if estimate is None else estimate

    for field in DATE_FIELDS:
        val = raw.get(field)
        task[field] = None if val is None or val == "" else parse_date(val, context=field)

    assigned = raw.get("assigned_to") or []
    if isinstance(assigned, str):
        assigned = [a.strip() for a in assigned.split(",") if a.strip()]
    task["assigned_to"] = list(assigned)
    completed = raw.get("completed", False)
    if isinstance(completed, str):
        completed = completed.strip().lower() in TRUE_STRINGS
    task["completed"] = bool(completed)
    task["progress"] = raw.get("progress") or None
    return task


def task_owners(task):
    """All owners of a (possibly multi-assignee) task."""
    if task.get("assigned_to"):
        return list(task["assigned_to"])
    if task.get("owner"):
        return [task["owner"]]
    return [UNASSIGNED]


# ── Resource Leveling ────────────────────────────────────────────────────────

class _LevelingState:
    """Owner availability and CONTINUOUS bookkeeping for one scheduling call."""

    def __init__(self, project_start, reserve_pinned=False):
        self.project_start = project_start
        self.reserve_pinned = reserve_pinned
        self.next_available = {}
        self.continuous_rows = []

    def next_day(self, owner):
        return self.next_available.setdefault(owner, 1)

    def reserve(self, owner, day):
        self.next_available[owner] = max(self.next_day(owner), day)


def _row_base(task):
    """Copy of the task's fields with dates rendered as ISO strings."""
    row = dict(task)
    for field in DATE_FIELDS:
        row[field] = format_date(task.get(field))
    return row


def _set_calendar_dates(row, project_start):
    row["calculated_start_date"] = format_date(working_day_to_date(project_start, row["start_day"]))
    row["calculated_end_date"] = format_date(working_day_to_date(project_start, row["end_day"]))


def _place_task(task, owner, state):
    """Level one task for one owner and return its scheduled row."""
    activity_type = task["activity_type"]
    state.next_day(owner)

    duration_days = calculate_duration(task)
    effective = effective_duration(duration_days)
    pinned = task.get("start_date") is not None

    if pinned:
        start_day = date_to_working_day(task["start_date"], state.project_start)
    elif can_overlap(activity_type):
        start_day = 1
    else:
        start_day = state.next_day(owner)

    row = _row_base(task)
    row["owner"] = owner

    if activity_type == MILESTONE or effective == 0:
        end_day = start_day
    elif activity_type == RECURRING_WEEKLY:
        end_day = start_day
    else:
        end_day = start_day + effective - 1
    if activity_type == CONTINUOUS:
        state.continuous_rows.append(row)

    if not pinned and not can_overlap(activity_type):
        if activity_type == RECURRING_WEEKLY:
            # blocks only the one day, not the week
            state.next_available[owner] = start_day + 1
        elif effective != 0:
            state.next_available[owner] = end_day + 1
    elif pinned and state.reserve_pinned and not can_overlap(activity_type) and effective != 0:
        state.reserve(owner, end_day + 1)

    row.update({
        "start_day": start_day,
        "end_day": end_day,
        "start_week": day_to_week(start_day),
        "end_week": day_to_week(end_day),
        "raw_duration": duration_days,
        "effective_duration": effective,
        "duration_days": duration_days,
        "is_frozen": False,
        "recurrence": TEMPLATE if activity_type == RECURRING_WEEKLY else None,
    })
    _set_calendar_dates(row, state.project_start)
    return row


def _stretch_continuous(state, total_days, total_weeks):
    """Second pass: every CONTINUOUS row runs to the project's final day."""
    for row in state.continuous_rows:
        row["end_day"] = total_days
        row["end_week"] = total_weeks
        row["duration_days"] = total_days - row["start_day"] + 1
        _set_calendar_dates(row, state.project_start)


def _timestamp(clock):
    return clock().strftime("%Y-%m-%dT%H:%M:%S")


def schedule_tasks(tasks, clock=None, reserve_pinned=False):
    """Level tasks per owner in input order.

    Order matters: nothing is sorted by priority or due date, so the same
    owner's tasks submitted in a different order give a different schedule.
    Returns scheduled rows, project totals, per-owner timelines, the project
    start date, and metadata. An empty task list gives an all-zero result.
    """
    clock = clock or datetime.now
    tasks = [normalize_task(t) for t in (tasks or [])]
    project_start = get_project_start_date(tasks, clock)

    if not tasks:
        return {
            "scheduled_tasks": [],
            "total_project_days": 0,
            "total_project_weeks": 0,
            "owner_timelines": {},
            "project_start_date": format_date(project_start),
            "metadata": {
                "total_tasks": 0,
                "working_days_per_week": WORKING_DAYS_PER_WEEK,
                "scheduled_at": _timestamp(clock),
            },
        }

    state = _LevelingState(project_start, reserve_pinned=reserve_pinned)
    scheduled = [_place_task(task, task["owner"], state) for task in tasks]

    total_days = max([row["end_day"] for row in scheduled] + [0])
    total_weeks = day_to_week(total_days)
    _stretch_continuous(state, total_days, total_weeks)

    owner_timelines = {}
    for owner, next_day in state.next_available.items():
        owner_rows = [row for row in scheduled if row["owner"] == owner]
        owner_timelines[owner] = {
            "total_tasks": len(owner_rows),
            "next_available_day": next_day,
            "tasks": [row["name"] for row in owner_rows],
        }

    return {
        "scheduled_tasks": scheduled,
        "total_project_days": total_days,
        "total_project_weeks": total_weeks,
        "owner_timelines": owner_timelines,
        "project_start_date": format_date(project_start),
        "metadata": {
            "total_tasks": len(tasks),
            "working_days_per_week": WORKING_DAYS_PER_WEEK,
            "scheduled_at": _timestamp(clock),
        },
    }


# ── Recurring Expansion ──────────────────────────────────────────────────────

def expand_recurring_task(task, total_project_weeks, project_start_date=None):
    """One occurrence per week from the task's start week through the last project week.

    Non-recurring and frozen rows pass through as a one-item list. A template
    that starts after the last week yields no occurrences.
    """
    if task.get("activity_type") != RECURRING_WEEKLY or task.get("is_frozen"):
        return [task]

    project_start = parse_date(project_start_date) if project_start_date else None
    occurrences = []
    for week in range(task["start_week"], total_project_weeks + 1):
        day = week_to_day(week)
        occurrence = dict(task)
        occurrence.update({
            "start_day": day,
            "end_day": day,
            "start_week": week,
            "end_week": week,
            "recurrence": OCCURRENCE,
            "occurrence_week": week,
        })
        if project_start is not None:
            _set_calendar_dates(occurrence, project_start)
        occurrences.append(occurrence)
    return occurrences


def expand_recurring_tasks(scheduled_tasks, total_project_weeks, project_start_date=None):
    """Expand every recurring template in a schedule, keeping row order."""
    expanded = []
    for task in scheduled_tasks:
        expanded.extend(expand_recurring_task(task, total_project_weeks, project_start_date))
    return expanded


# ── Occupancy Grid ───────────────────────────────────────────────────────────

def _grid_date(project_start, absolute_day):
    if project_start is None:
        return None
    return format_date(working_day_to_date(project_start, absolute_day))


def build_week_grid(total_weeks, project_start=None):
    """Week headers: week number, day range, and the five day cells."""
    weeks = []
    for week in range(1, total_weeks + 1):
        days = []
        for day_in_week in range(1, WORKING_DAYS_PER_WEEK + 1):
            absolute_day = week_to_day(week) + day_in_week - 1
            days.append({
                "day_in_week": day_in_week,
                "day_name": DAY_NAMES[day_in_week - 1],
                "absolute_day": absolute_day,
                "date": _grid_date(project_start, absolute_day),
            })
        weeks.append({
            "week_number": week,
            "start_day": week_to_day(week),
            "end_day": week * WORKING_DAYS_PER_WEEK,
            "days": days,
        })
    return weeks


def build_day_grid(total_weeks, project_start=None):
    """Flat day headers (absolute day -> week, day of week)."""
    days = []
    for week in range(1, total_weeks + 1):
        for day_in_week in range(1, WORKING_DAYS_PER_WEEK + 1):
            absolute_day = week_to_day(week) + day_in_week - 1
            days.append({
                "absolute_day": absolute_day,
                "week": week,
                "day_in_week": day_in_week,
                "day_name": DAY_NAMES[day_in_week - 1],
                "date": _grid_date(project_start, absolute_day),
            })
    return days


def group_tasks_by_owner(tasks):
    grouped = {}
    for task in tasks:
        grouped.setdefault(task["owner"], []).append(task)
    return grouped


def _task_ref(task, name=None, week_instance=None):
    return {
        "name": name or task["name"],
        "activity_type": task.get("activity_type"),
        "duration_days": task.get("duration_days"),
        "start_day": task.get("start_day"),
        "end_day": task.get("end_day"),
        "recurrence": task.get("recurrence"),
        "week_instance": week_instance,
    }


def _mark_day(weeks, absolute_day, ref, owner, warnings):
    """Append ref to a day cell; out-of-range days are skipped and reported."""
    week_idx = (absolute_day - 1) // WORKING_DAYS_PER_WEEK
    day_idx = (absolute_day - 1) % WORKING_DAYS_PER_WEEK
    if absolute_day < 1 or week_idx >= len(weeks):
        warnings.append(f"{owner}: '{ref['name']}' day {absolute_day} is outside the "
                        f"{len(weeks)}-week grid, skipped.")
        return
    cell = weeks[week_idx]["days"][day_idx]
    cell["tasks"].append(ref)
    cell["is_empty"] = False


def build_owner_occupancy(owner_tasks, total_weeks, project_start=None, owner="", warnings=None):
    """Week x day matrix of cells for one owner, with each active task marked."""
    if warnings is None:
        warnings = []
    weeks = build_week_grid(total_weeks, project_start)
    for week in weeks:
        for cell in week["days"]:
            cell["tasks"] = []
            cell["is_empty"] = True

    for task in owner_tasks:
        activity_type = task.get("activity_type")
        if activity_type == MILESTONE:
            _mark_day(weeks, task["start_day"], _task_ref(task), owner, warnings)
        elif task.get("recurrence") == OCCURRENCE:
            week = task["occurrence_week"]
            ref = _task_ref(task, name=f"{task['name']} (Week {week})", week_instance=week)
            _mark_day(weeks, task["start_day"], ref, owner, warnings)
        elif activity_type == RECURRING_WEEKLY:
            # templates, frozen rows and untagged rows: one day per covered week
            for week in range(task["start_week"], task["end_week"] + 1):
                ref = _task_ref(task, name=f"{task['name']} (Week {week})", week_instance=week)
                _mark_day(weeks, week_to_day(week), ref, owner, warnings)
        else:
            for day in range(task["start_day"], task["end_day"] + 1):
                _mark_day(weeks, day, _task_ref(task), owner, warnings)
    return weeks


def _round_half_up(value, digits=0):
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def calculate_owner_stats(weeks, total_days):
    """Occupied/free/overlapping day counts and utilisation % for one owner."""
    occupied = 0
    overlapping = 0
    for week in weeks:
        for cell in week["days"]:
            if not cell["is_empty"]:
                occupied += 1
                if len(cell["tasks"]) > 1:
                    overlapping += 1
    utilization = _round_half_up(occupied / total_days * 100, 1) if total_days > 0 else 0
    return {
        "occupied_days": occupied,
        "free_days": total_days - occupied,
        "utilization": utilization,
        "overlapping_days": overlapping,
        "has_overload": overlapping > 0,
    }


def build_occupancy_grid(scheduled_tasks, total_project_weeks, project_start_date=None, clock=None):
    """Per-owner, per-day occupancy grid with utilisation and overload stats.

    Owners are sorted by name. Cells holding more than one task signal overload.
    """
    clock = clock or datetime.now
    project_start = parse_date(project_start_date) if project_start_date else None
    start_str = format_date(project_start)

    if not scheduled_tasks:
        return {
            "users": [],
            "total_weeks": 0,
            "total_days": 0,
            "week_grid": [],
            "day_grid": [],
            "project_start_date": start_str,
            "warnings": [],
            "metadata": {"total_users": 0, "total_tasks": 0, "generated_at": _timestamp(clock)},
        }

    total_days = total_project_weeks * WORKING_DAYS_PER_WEEK
    warnings = []
    users = []
    for owner, owner_tasks in group_tasks_by_owner(scheduled_tasks).items():
        weeks = build_owner_occupancy(owner_tasks, total_project_weeks, project_start,
                                      owner=owner, warnings=warnings)
        users.append({
            "user_name": owner,
            "total_tasks": len(owner_tasks),
            "weeks": weeks,
            "stats": calculate_owner_stats(weeks, total_days),
        })
    users.sort(key=lambda u: u["user_name"])

    return {
        "users": users,
        "total_weeks": total_project_weeks,
        "total_days": total_days,
        "week_grid": build_week_grid(total_project_weeks, project_start),
        "day_grid": build_day_grid(total_project_weeks, project_start),
        "project_start_date": start_str,
        "warnings": warnings,
        "metadata": {
            "total_users": len(users),
            "total_tasks": len(scheduled_tasks),
            "generated_at": _timestamp(clock),
        },
    }


def day_color_class(cell):
    if cell["is_empty"]:
        return "empty"
    if len(cell["tasks"]) > 1:
        return "overloaded"
    return "occupied"


def build_flat_grid(scheduled_tasks, total_project_weeks, project_start_date=None, clock=None):
    """Same grid as build_occupancy_grid, one row per owner with one cell per day."""
    grid = build_occupancy_grid(scheduled_tasks, total_project_weeks, project_start_date, clock)
    rows = []
    for user in grid["users"]:
        cells = [cell for week in user["weeks"] for cell in week["days"]]
        rows.append({
            "user_name": user["user_name"],
            "stats": user["stats"],
            "days": [{
                "absolute_day": cell["absolute_day"],
                "tasks": cell["tasks"],
                "is_empty": cell["is_empty"],
                "color_class": day_color_class(cell),
            } for cell in cells],
        })
    return {
        "rows": rows,
        "total_weeks": grid["total_weeks"],
        "total_days": grid["total_days"],
        "day_grid": grid["day_grid"],
        "warnings": grid["warnings"],
        "metadata": grid["metadata"],
    }


def build_sprint_plan(tasks, clock=None, expand_recurring=False, flat=False, reserve_pinned=False):
    """Schedule, optionally expand recurring templates, then build the day view."""
    schedule = schedule_tasks(tasks, clock=clock, reserve_pinned=reserve_pinned)
    if expand_recurring:
        schedule["scheduled_tasks"] = expand_recurring_tasks(
            schedule["scheduled_tasks"], schedule["total_project_weeks"],
            schedule["project_start_date"])
    build = build_flat_grid if flat else build_occupancy_grid
    day_view = build(schedule["scheduled_tasks"], schedule["total_project_weeks"],
                     schedule["project_start_date"], clock)
    return {"schedule": schedule, "day_view": day_view}


# ── Completion-Safe Scheduling ───────────────────────────────────────────────

def get_report_start_date(tasks, clock=None):
    """Earliest actual (or planned) start across tasks, else today. Snapped to a working day."""
    clock = clock or datetime.now
    starts = [t.get("actual_start_date") or t.get("start_date") for t in tasks]
    starts = [norm_date(s) for s in starts if s is not None]
    return next_working_day(min(starts) if starts else clock())


def _new_report_timeline():
    return {
        "next_available_day": 1,
        "total_tasks": 0,
        "completed_tasks": 0,
        "active_tasks": 0,
        "tasks": [],
    }


def _freeze_task(task, owner, owners, state):
    """Pin a completed task to its recorded dates; it still consumes the owner's capacity."""
    project_start = state.project_start
    actual_start = task.get("actual_start_date") or task.get("start_date") or project_start
    actual_end = task.get("actual_end_date") or task.get("due_date") or actual_start

    start_day = date_to_working_day(actual_start, project_start)
    end_day = max(start_day, date_to_working_day(previous_working_day(actual_end), project_start))
    duration_days = end_day - start_day + 1

    row = _row_base(task)
    row.update({
        "owner": owner,
        "all_owners": owners,
        "start_day": start_day,
        "end_day": end_day,
        "start_week": day_to_week(start_day),
        "end_week": day_to_week(end_day),
        "raw_duration": calculate_duration(task),
        "effective_duration": duration_days,
        "duration_days": duration_days,
        "status": "completed",
        "is_frozen": True,
        "recurrence": None,
    })
    _set_calendar_dates(row, project_start)
    state.reserve(owner, end_day + 1)
    return row


def _task_summary(row):
    return {
        "name": row["name"],
        "status": row["status"],
        "start_day": row["start_day"],
        "end_day": row["end_day"],
        "duration_days": row["duration_days"],
        "activity_type": row["activity_type"],
        "all_owners": row["all_owners"],
    }


def schedule_final_report(tasks, team=None, clock=None, reserve_pinned=False,
                          expand_recurring=False):
    """Completion-safe schedule for the final project report.

    Completed tasks are frozen at their historical dates; active tasks are
    leveled as in schedule_tasks. Every roster member gets a timeline entry,
    even with no tasks, so idle capacity stays visible.

    With expand_recurring, active recurring rows become weekly occurrences
    before the timelines and stats are counted; frozen rows never expand.
    """
    clock = clock or datetime.now
    tasks = [normalize_task(t) for t in (tasks or [])]
    project_start = get_report_start_date(tasks, clock)
    state = _LevelingState(project_start, reserve_pinned=reserve_pinned)
    for name in team or []:
        state.next_day(name)

    completed = [t for t in tasks if is_task_completed(t)]
    active = [t for t in tasks if not is_task_completed(t)]

    frozen_rows = []
    for task in completed:
        owners = task_owners(task)
        for owner in owners:
            frozen_rows.append(_freeze_task(task, owner, owners, state))

    active_rows = []
    for task in active:
        owners = task_owners(task)
        for owner in owners:
            row = _place_task(task, owner, state)
            row["all_owners"] = owners
            row["status"] = task.get("progress") or "not_started"
            active_rows.append(row)

    all_rows = frozen_rows + active_rows
    total_days = max([row["end_day"] for row in all_rows] + [0])
    total_weeks = day_to_week(total_days)
    _stretch_continuous(state, total_days, total_weeks)

    if expand_recurring:
        active_rows = expand_recurring_tasks(active_rows, total_weeks, format_date(project_start))
        all_rows = frozen_rows + active_rows

    owner_timelines = {}
    for owner, next_day in state.next_available.items():
        timeline = _new_report_timeline()
        timeline["next_available_day"] = next_day
        for row in all_rows:
            if row["owner"] != owner:
                continue
            timeline["total_tasks"] += 1
            if row["is_frozen"]:
                timeline["completed_tasks"] += 1
            else:
                timeline["active_tasks"] += 1
            timeline["tasks"].append(_task_summary(row))
        owner_timelines[owner] = timeline

    total_rows = len(all_rows)
    completion_rate = int(_round_half_up(len(frozen_rows) / total_rows * 100)) if total_rows else 0

    return {
        "scheduled_tasks": all_rows,
        "completed_tasks": frozen_rows,
        "active_tasks": active_rows,
        "owner_timelines": owner_timelines,
        "total_project_days": total_days,
        "total_project_weeks": total_weeks,
        "project_start_date": format_date(project_start),
        "report_generated_at": _timestamp(clock),
        "stats": {
            "total_tasks": total_rows,
            "completed_count": len(frozen_rows),
            "active_count": len(active_rows),
            "completion_rate": completion_rate,
        },
    }
