"""
SprintView Planning Tool
Reads sprint tasks from Excel (or JSON), levels them per owner on a working-day
timeline, and outputs a sprint chart, a per-owner day occupancy heatmap, a
console summary, and optionally the full schedule as JSON.

Features:
  - Activity types: one-time, continuous, API (1 day), recurring weekly,
    milestone, buffer, parallel-allowed
  - Multi-assignee tasks fanned out into one row per owner
  - Final report mode: completed tasks frozen at their actual dates,
    full team roster always listed
  - Overload and idle-capacity detection from the day-level grid
  - Excel template with dropdowns and conditional formatting
"""

import argparse
import difflib
import io
import json
import math
import os
import sys
from datetime import datetime

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from matplotlib.colors import ListedColormap
from matplotlib.patches import FancyBboxPatch
import numpy as np
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side
from openpyxl.worksheet.datavalidation import DataValidation
from openpyxl.formatting.rule import CellIsRule

from sprintview_scheduler import (
    ACTIVITY_TYPES,
    DATE_FIELDS,
    DAY_NAMES,
    MILESTONE,
    PROGRESS_VALUES,
    WORKING_DAYS_PER_WEEK,
    build_occupancy_grid,
    expand_recurring_tasks,
    parse_date,
    schedule_final_report,
    schedule_tasks,
    week_to_day,
)


# ── Constants ────────────────────────────────────────────────────────────────

_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_INPUT = os.path.join(_DIR, "sprint_data.xlsx")
DEFAULT_OUTDIR = os.path.join(_DIR, "output")

ACTIVITY_TYPE_CONFIG = {
    "ONE_TIME": {"label": "One-Time Task", "color": "#3B82F6", "linestyle": "-", "alpha": 1.0,
                 "description": "Standard task with fixed duration"},
    "CONTINUOUS": {"label": "Continuous Task", "color": "#8B5CF6", "linestyle": "-", "alpha": 0.85,
                   "description": "Task that runs until project end"},
    "API_1_DAY": {"label": "API Integration", "color": "#10B981", "linestyle": "-", "alpha": 1.0,
                  "description": "API integration task (always 1 day)"},
    "RECURRING_WEEKLY": {"label": "Recurring Weekly", "color": "#F59E0B", "linestyle": "-", "alpha": 0.9,
                         "description": "Task that repeats weekly (1 day per week)"},
    "MILESTONE": {"label": "Milestone", "color": "#EF4444", "linestyle": "-", "alpha": 1.0,
                  "description": "Zero-duration checkpoint"},
    "BUFFER": {"label": "Buffer/Padding", "color": "#6B7280", "linestyle": "--", "alpha": 0.6,
               "description": "Risk padding (blocks owner availability)"},
    "PARALLEL_ALLOWED": {"label": "Parallel Task", "color": "#06B6D4", "linestyle": "-", "alpha": 0.7,
                         "description": "Can overlap with other tasks for same owner"},
}

TASK_COLUMNS = ["Task", "Owner", "Duration", "Activity Type", "Start Date", "Due Date",
                "Actual Start", "Actual End", "Progress"]
TASK_DATE_COLUMNS = {
    "Start Date": "start_date",
    "Due Date": "due_date",
    "Actual Start": "actual_start_date",
    "Actual End": "actual_end_date",
}

# Keys accepted from JSON payloads -> canonical task keys
JSON_FIELD_ALIASES = {
    "taskName": "name",
    "title": "name",
    "taskOwner": "owner",
    "ownerName": "owner",
    "tentativeEtaDays": "duration_estimate",
    "estimatedDays": "duration_estimate",
    "durationEstimate": "duration_estimate",
    "activityType": "activity_type",
    "startDate": "start_date",
    "dueDate": "due_date",
    "actualStartDate": "actual_start_date",
    "actualEndDate": "actual_end_date",
    "assignedTo": "assigned_to",
}

STYLE = {
    "font_family": "Segoe UI",
    "title_size": 18,
    "subtitle_size": 13,
    "label_size": 9.5,
    "tick_size": 8.5,
    "small_size": 7.5,
    "bg_color": "#FAFAFA",
    "panel_bg": "#FFFFFF",
    "text_primary": "#1A1A2E",
    "text_secondary": "#555555",
    "text_muted": "#999999",
    "grid_color": "#E0E0E0",
    "row_shade_even": "#F5F5F5",
    "row_shade_odd": "#FFFFFF",
    "week_shade": "#EEF2F7",
    "header_bg_alpha": 0.08,
    "bar_height": 0.6,
    "dpi": 180,
    "fig_width": 20,
    "frozen_alpha": 0.35,
    "frozen_edge_color": "#AAAAAA",
    "empty_color": "#F5F5F5",
    "occupied_color": "#43A047",
    "overloaded_color": "#E53935",
}

OWNER_COLORS = ["#3B82F6", "#EF4444", "#10B981", "#F59E0B", "#8B5CF6",
                "#EC4899", "#06B6D4", "#84CC16", "#F97316", "#6366F1"]


# ── Style Helpers ────────────────────────────────────────────────────────────

def apply_style():
    """Configure matplotlib rcParams for consistent styling."""
    plt.rcParams.update({
        "font.family": STYLE["font_family"],
        "font.size": STYLE["label_size"],
        "axes.facecolor": STYLE["panel_bg"],
        "figure.facecolor": STYLE["bg_color"],
        "axes.edgecolor": STYLE["grid_color"],
        "axes.linewidth": 0.8,
        "axes.grid": False,
        "grid.color": STYLE["grid_color"],
        "grid.linewidth": 0.5,
        "grid.alpha": 0.3,
        "xtick.color": STYLE["text_secondary"],
        "ytick.color": STYLE["text_secondary"],
        "text.color": STYLE["text_primary"],
        "image.interpolation": "nearest",
        "legend.fontsize": STYLE["small_size"],
    })


def style_axes(ax, title="", xlabel="", show_grid_x=False):
    """Left-aligned title, muted x label, open top/right spines."""
    if title:
        ax.set_title(title, fontsize=STYLE["subtitle_size"], fontweight="bold",
                     color=STYLE["text_primary"], pad=12, loc="left")
    if xlabel:
        ax.set_xlabel(xlabel, fontsize=STYLE["label_size"], color=STYLE["text_secondary"])
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.spines["left"].set_linewidth(0.6)
    ax.spines["bottom"].set_linewidth(0.6)
    if show_grid_x:
        ax.grid(axis="x", alpha=0.15, linewidth=0.5, color=STYLE["grid_color"])
    ax.set_axisbelow(True)


def add_header_footer(fig, title, subtitle="", generated_at=None):
    """Add a title block and generation timestamp footer."""
    fig.suptitle(title, fontsize=STYLE["title_size"], fontweight="bold",
                 color=STYLE["text_primary"], y=0.98, x=0.04, ha="left")
    if subtitle:
        fig.text(0.04, 0.948, subtitle, fontsize=STYLE["small_size"] + 1,
                 color=STYLE["text_muted"], ha="left")
    stamp = generated_at or datetime.now().strftime("%Y-%m-%dT%H:%M:%S")
    fig.text(0.98, 0.008, f"Generated {stamp}",
             ha="right", fontsize=STYLE["small_size"], color=STYLE["text_muted"])
    fig.text(0.04, 0.008, "SprintView Planning Tool",
             ha="left", fontsize=STYLE["small_size"], color=STYLE["text_muted"])


def draw_rounded_bar(ax, x, y, width, height, color, alpha=1.0,
                     edgecolor=None, linewidth=1.2, hatch="", zorder=3,
                     linestyle="-"):
    """Draw a horizontal bar with rounded corners using FancyBboxPatch."""
    if width <= 0:
        return None
    rounding = min(0.12, height * 0.3, width * 0.05)
    fancy = FancyBboxPatch(
        (x, y - height / 2), width, height,
        boxstyle=f"round,pad=0,rounding_size={rounding}",
        facecolor=color, alpha=alpha,
        edgecolor=edgecolor or color, linewidth=linewidth,
        hatch=hatch, zorder=zorder, linestyle=linestyle,
    )
    ax.add_patch(fancy)
    return fancy


def clean_str(val):
    """Return stripped string or empty string for NaN/None."""
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return ""
    if val is pd.NaT:
        return ""
    return str(val).strip()


class _TeeWriter:
    """Write to two streams simultaneously (for summary.txt capture)."""
    def __init__(self, a, b):
        self.a, self.b = a, b
    def write(self, data):
        self.a.write(data)
        self.b.write(data)
    def flush(self):
        self.a.flush()
        self.b.flush()


# ── Template Generation ─────────────────────────────────────────────────────

def generate_template(output_path):
    """Create an Excel template with Team and Tasks sheets, example data,
    dropdowns, and conditional formatting."""
    wb = Workbook()

    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_fill = PatternFill(start_color="2E3B4E", end_color="2E3B4E", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center")
    thin_border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )

    def style_header(ws, row=1):
        for cell in ws[row]:
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = header_alignment
            cell.border = thin_border

    def style_data_rows(ws, start_row=2):
        for row in ws.iter_rows(min_row=start_row, max_row=ws.max_row):
            for cell in row:
                cell.border = thin_border
                cell.alignment = Alignment(vertical="center")

    # ── Sheet 1: Team ──
    ws_team = wb.active
    ws_team.title = "Team"
    ws_team.append(["Name", "Role"])
    for member in [["Alice", "Backend"], ["Bob", "Frontend"], ["Carol", "QA"], ["Dave", "PM"]]:
        ws_team.append(member)
    ws_team.column_dimensions["A"].width = 20
    ws_team.column_dimensions["B"].width = 15
    style_header(ws_team)
    style_data_rows(ws_team)
    ws_team.freeze_panes = "A2"

    # ── Sheet 2: Tasks ──
    ws_tasks = wb.create_sheet("Tasks")
    ws_tasks.append(TASK_COLUMNS)
    example_tasks = [
        ["Database Design", "Alice", 5, "ONE_TIME", "", "", "2026-03-02", "2026-03-06", "completed"],
        ["API Development", "Alice", 10, "ONE_TIME", "", "", "", "", "in_progress"],
        ["Payment Gateway", "Alice", "", "API_1_DAY", "", "", "", "", "not_started"],
        ["UI Screens", "Bob", 8, "ONE_TIME", "", "", "", "", "not_started"],
        ["Code Review", "Bob", 10, "PARALLEL_ALLOWED", "", "", "", "", "not_started"],
        ["Regression Suite", "Carol", 3, "ONE_TIME", "", "", "", "", "not_started"],
        ["Risk Buffer", "Carol", 2, "BUFFER", "", "", "", "", "not_started"],
        ["Weekly Standup", "Alice, Bob, Carol", 1, "RECURRING_WEEKLY", "", "", "", "", "not_started"],
        ["Stakeholder Updates", "Dave", 1, "CONTINUOUS", "", "", "", "", "in_progress"],
        ["Beta Release", "Dave", 0, "MILESTONE", "", "", "", "", "not_started"],
    ]
    for task in example_tasks:
        ws_tasks.append(task)

    widths = {"A": 32, "B": 24, "C": 11, "D": 20, "E": 14, "F": 14, "G": 14, "H": 14, "I": 14}
    for col, width in widths.items():
        ws_tasks.column_dimensions[col].width = width
    style_header(ws_tasks)
    style_data_rows(ws_tasks)
    ws_tasks.freeze_panes = "A2"

    # Center date columns (E-H)
    for row_idx in range(2, ws_tasks.max_row + 1):
        for col_idx in range(5, 9):
            ws_tasks.cell(row=row_idx, column=col_idx).alignment = Alignment(
                horizontal="center", vertical="center")

    max_task_row = 200

    # Activity Type dropdown
    dv_type = DataValidation(type="list", formula1=f'"{",".join(ACTIVITY_TYPES)}"', allow_blank=True)
    dv_type.error = "Please select a valid activity type, or leave blank for ONE_TIME"
    dv_type.errorTitle = "Invalid Activity Type"
    ws_tasks.add_data_validation(dv_type)
    dv_type.add(f"D2:D{max_task_row}")

    # Progress dropdown
    dv_progress = DataValidation(type="list", formula1=f'"{",".join(PROGRESS_VALUES)}"', allow_blank=True)
    dv_progress.error = "Please select not_started, in_progress, or completed"
    dv_progress.errorTitle = "Invalid Progress"
    ws_tasks.add_data_validation(dv_progress)
    dv_progress.add(f"I2:I{max_task_row}")

    # Duration must be a non-negative number
    dv_duration = DataValidation(type="decimal", operator="greaterThanOrEqual", formula1="0", allow_blank=True)
    dv_duration.error = "Duration must be zero or more working days (half days allowed)"
    dv_duration.errorTitle = "Invalid Duration"
    ws_tasks.add_data_validation(dv_duration)
    dv_duration.add(f"C2:C{max_task_row}")

    # ── Conditional Formatting on Tasks sheet ──
    type_range = f"D2:D{max_task_row}"
    for activity_type, config in ACTIVITY_TYPE_CONFIG.items():
        hex_color = config["color"].lstrip("#")
        ws_tasks.conditional_formatting.add(
            type_range,
            CellIsRule(operator="equal", formula=[f'"{activity_type}"'],
                       font=Font(bold=True, color=hex_color)))

    progress_range = f"I2:I{max_task_row}"
    ws_tasks.conditional_formatting.add(
        progress_range,
        CellIsRule(operator="equal", formula=['"completed"'],
                   font=Font(color="1B5E20"), fill=PatternFill(bgColor="C8E6C9")))
    ws_tasks.conditional_formatting.add(
        progress_range,
        CellIsRule(operator="equal", formula=['"in_progress"'],
                   font=Font(color="E65100"), fill=PatternFill(bgColor="FFE0B2")))
    ws_tasks.conditional_formatting.add(
        progress_range,
        CellIsRule(operator="equal", formula=['"not_started"'],
                   font=Font(color="757575"), fill=PatternFill(bgColor="F5F5F5")))

    wb.save(output_path)
    print(f"Template created: {output_path}")
    print("  - Sheet 'Team': the full roster (listed in final reports even when idle)")
    print("  - Sheet 'Tasks': tasks with owner(s), duration, activity type, optional dates and progress")
    print("  - Dropdowns: Activity Type, Progress")
    print("  - Multiple owners: separate names with commas (one schedule row per owner)")
    print(f"\nEdit the file, then run again without --template to generate the charts.")


# ── Data Loading ─────────────────────────────────────────────────────────────

def normalize_columns(df, expected):
    """Strip column names and match them case-insensitively to the expected names.
    Renames in place. Returns the set of expected names not found."""
    df.columns = [str(c).strip() for c in df.columns]
    lookup = {name.lower(): name for name in expected}
    df.rename(columns={c: lookup[c.lower()] for c in df.columns if c.lower() in lookup},
              inplace=True)
    return {name for name in expected if name not in df.columns}


def split_owners(val):
    """'Alice, Bob' -> ['Alice', 'Bob'] (duplicates dropped, order kept)."""
    owners = []
    for part in clean_str(val).split(","):
        name = part.strip()
        if name and name not in owners:
            owners.append(name)
    return owners


def load_team(filepath):
    """Load the roster from the 'Team' sheet. Returns names in sheet order."""
    try:
        df = pd.read_excel(filepath, sheet_name="Team")
    except (ValueError, Exception):
        # Sheet doesn't exist, the roster is optional
        return []
    if df.empty:
        return []
    missing = normalize_columns(df, {"Name", "Role"}) & {"Name"}
    if missing:
        print(f"  ERROR: Team sheet is missing column(s): {', '.join(sorted(missing))}. "
              f"Found: {', '.join(df.columns)}")
        return []
    team = []
    for _, row in df.iterrows():
        name = clean_str(row["Name"])
        if not name or name == "nan" or name in team:
            continue
        team.append(name)
    return team


def _optional_date(row, column, row_num):
    if column not in row.index or pd.isna(row[column]) or clean_str(row[column]) == "":
        return None
    return parse_date(row[column], context=f"Tasks row {row_num}, '{column}'")


def load_tasks(filepath):
    """Load tasks from the 'Tasks' sheet. Owners are kept as a list (not fanned out)."""
    try:
        df = pd.read_excel(filepath, sheet_name="Tasks")
    except Exception as e:
        print(f"  WARNING: Could not read Tasks sheet: {e}")
        return []
    if df.empty:
        return []
    missing = normalize_columns(df, set(TASK_COLUMNS)) & {"Task", "Owner"}
    if missing:
        print(f"  ERROR: Tasks sheet is missing column(s): {', '.join(sorted(missing))}. "
              f"Found: {', '.join(df.columns)}")
        return []
    tasks = []
    for idx, row in df.iterrows():
        row_num = int(idx) + 2
        try:
            task_name = clean_str(row["Task"])
            if not task_name or task_name == "nan":
                continue  # skip blank rows

            owners = split_owners(row["Owner"])

            # Blank duration falls back to the activity type default
            duration = None
            if "Duration" in df.columns and pd.notna(row.get("Duration")) and clean_str(row["Duration"]):
                duration = float(row["Duration"])

            activity_type = clean_str(row.get("Activity Type", "")).upper().replace(" ", "_") or None
            progress = clean_str(row.get("Progress", "")).lower().replace(" ", "_") or None

            task = {
                "name": task_name,
                "owner": owners[0] if owners else "",
                "assigned_to": owners,
                "duration_estimate": duration,
                "activity_type": activity_type,
                "progress": progress,
                "completed": progress == "completed",
                "_row": row_num,
            }
            for column, field in TASK_DATE_COLUMNS.items():
                task[field] = _optional_date(row, column, row_num)
            tasks.append(task)
        except Exception as e:
            print(f"  WARNING: Could not parse row {row_num}: {e}")
    return tasks


def _canonical_json_task(raw, index):
    task = {}
    for key, val in raw.items():
        task[JSON_FIELD_ALIASES.get(key, key)] = val
    assigned = task.get("assigned_to") or []
    if isinstance(assigned, str):
        assigned = split_owners(assigned)
    # populated user references arrive as {"name": ...}
    task["assigned_to"] = [a["name"] if isinstance(a, dict) else str(a) for a in assigned]
    if not task.get("owner") and task["assigned_to"]:
        task["owner"] = task["assigned_to"][0]
    task["_row"] = index + 1
    return task


def load_json_tasks(filepath):
    """Load (team, tasks) from a JSON file: a task list, or {"tasks": [...], "team": [...]}.
    camelCase keys are mapped to the canonical snake_case ones."""
    with open(filepath, encoding="utf-8") as f:
        payload = json.load(f)
    if isinstance(payload, list):
        raw_tasks, raw_team = payload, []
    else:
        raw_tasks, raw_team = payload.get("tasks", []), payload.get("team", [])
    team = []
    for member in raw_team:
        name = member.get("name") if isinstance(member, dict) else clean_str(member)
        if name and name not in team:
            team.append(name)
    tasks = [_canonical_json_task(raw, i) for i, raw in enumerate(raw_tasks)]
    return team, tasks


def load_data(filepath):
    """Load (team, tasks) from an .xlsx or .json file."""
    if os.path.splitext(filepath)[1].lower() == ".json":
        return load_json_tasks(filepath)
    return load_team(filepath), load_tasks(filepath)


# ── Data Validation ──────────────────────────────────────────────────────────

def validate_tasks(tasks, team=None):
    """Validate loaded tasks before scheduling. Returns (errors, warnings) lists."""
    errors = []
    warnings = []

    if not tasks:
        errors.append("No tasks found. Add at least one task.")
        return errors, warnings

    team_names = set(team or [])

    for idx, task in enumerate(tasks):
        row = task.get("_row", idx + 1)
        name = task.get("name")

        if not name:
            errors.append(f"Row {row}: Task name is required.")

        owners = task.get("assigned_to") or ([task["owner"]] if task.get("owner") else [])
        if not owners:
            errors.append(f"Row {row}: Task '{name}' has no owner.")

        duration = task.get("duration_estimate")
        if duration is not None:
            if isinstance(duration, bool) or not isinstance(duration, (int, float)) or math.isnan(duration):
                errors.append(f"Row {row}: Task '{name}' duration {duration!r} is not a number.")
            elif duration < 0:
                errors.append(f"Row {row}: Task '{name}' has {duration} days (must be zero or more).")
            elif abs(duration * 2 - round(duration * 2)) > 1e-9:
                warnings.append(f"Row {row}: Task '{name}' duration {duration} is not a half-day "
                                f"increment; it will be rounded up.")

        activity_type = task.get("activity_type")
        if activity_type and activity_type not in ACTIVITY_TYPES:
            close = difflib.get_close_matches(str(activity_type), ACTIVITY_TYPES, n=1, cutoff=0.4)
            hint = f" Did you mean: '{close[0]}'?" if close else ""
            errors.append(f"Row {row}: Invalid activity type '{activity_type}'.{hint}")

        progress = task.get("progress")
        if progress and progress not in PROGRESS_VALUES:
            warnings.append(f"Row {row}: Progress '{progress}' not recognised. "
                            f"Valid: {', '.join(PROGRESS_VALUES)}")

        parsed = {}
        for field in DATE_FIELDS:
            val = task.get(field)
            if val is None or val == "":
                continue
            try:
                parsed[field] = parse_date(val, context=f"'{field}'")
            except ValueError as e:
                errors.append(f"Row {row}: {e}")

        if parsed.get("start_date") and parsed.get("due_date"):
            if parsed["due_date"] < parsed["start_date"]:
                warnings.append(f"Row {row}: Due date ({parsed['due_date'].strftime('%Y-%m-%d')}) "
                                f"is before start date.")

        if team_names:
            for owner in owners:
                if owner not in team_names:
                    warnings.append(f"Row {row}: '{owner}' not in Team sheet. "
                                    f"Team members: {', '.join(sorted(team_names))}")

    return errors, warnings


def fan_out_tasks(tasks):
    """One task row per owner, for the leveling scheduler."""
    rows = []
    for task in tasks:
        owners = task.get("assigned_to") or [task.get("owner")]
        for owner in owners:
            row = dict(task)
            row["owner"] = owner
            row["all_owners"] = list(owners)
            row["is_multi_user"] = len(owners) > 1
            rows.append(row)
    return rows


# ── Occupancy Frame ──────────────────────────────────────────────────────────

def occupancy_frame(day_view):
    """Task count per owner (rows) per absolute day (columns) from a nested day view."""
    columns = [d["absolute_day"] for d in day_view["day_grid"]]
    counts = {}
    for user in day_view["users"]:
        counts[user["user_name"]] = [len(cell["tasks"])
                                     for week in user["weeks"] for cell in week["days"]]
    if not counts:
        frame = pd.DataFrame(columns=columns, dtype=int)
    else:
        frame = pd.DataFrame.from_dict(counts, orient="index", columns=columns)
    frame.index.name = "owner"
    return frame


# ── Chart: Sprint Gantt ──────────────────────────────────────────────────────

def _draw_week_shading(ax, total_weeks, y_top):
    """Alternate light bands per week with a 'W<n>' label above each."""
    for week in range(1, total_weeks + 1):
        left = week_to_day(week) - 0.5
        if week % 2 == 0:
            ax.axvspan(left, left + WORKING_DAYS_PER_WEEK, color=STYLE["week_shade"],
                       alpha=0.6, zorder=0)
        ax.text(left + WORKING_DAYS_PER_WEEK / 2, y_top, f"W{week}",
                ha="center", va="bottom", fontsize=STYLE["small_size"],
                color=STYLE["text_muted"], fontweight="bold")


def render_sprint_chart(schedule, output_path):
    """Render the sprint Gantt chart on a working-day axis, grouped by owner."""
    apply_style()

    rows = schedule["scheduled_tasks"]
    total_days = schedule["total_project_days"]
    total_weeks = schedule["total_project_weeks"]
    if not rows or total_days <= 0:
        print("  No sprint data. Check: tasks have owners and the task list is not empty.")
        return

    # One chart row per (owner, task name); recurring occurrences share a row
    owners = sorted({r["owner"] for r in rows})
    grouped = {}
    for owner in owners:
        lanes = {}
        for r in sorted((r for r in rows if r["owner"] == owner), key=lambda r: r["start_day"]):
            lanes.setdefault(r["name"], []).append(r)
        grouped[owner] = lanes

    total_rows = sum(len(lanes) + 1 for lanes in grouped.values())
    fig_height = max(6, total_rows * 0.45 + 3)
    fig = plt.figure(figsize=(STYLE["fig_width"], fig_height), facecolor=STYLE["bg_color"])
    ax = fig.add_axes([0.18, 0.10, 0.77, 0.78])

    for i in range(total_rows):
        shade = STYLE["row_shade_even"] if i % 2 == 0 else STYLE["row_shade_odd"]
        ax.axhspan(i - 0.5, i + 0.5, color=shade, alpha=0.6, zorder=0)
    _draw_week_shading(ax, total_weeks, total_rows - 0.3)

    y_pos = total_rows - 1
    y_ticks, y_labels, y_colors = [], [], []
    for oidx, owner in enumerate(owners):
        owner_color = OWNER_COLORS[oidx % len(OWNER_COLORS)]
        ax.axhspan(y_pos - 0.4, y_pos + 0.4, color=owner_color,
                   alpha=STYLE["header_bg_alpha"], zorder=0)
        timeline = schedule["owner_timelines"].get(owner, {})
        y_ticks.append(y_pos)
        y_labels.append(f"{owner}  ({timeline.get('total_tasks', 0)} tasks)")
        y_colors.append(owner_color)
        y_pos -= 1

        for name, lane in grouped[owner].items():
            for r in lane:
                config = ACTIVITY_TYPE_CONFIG.get(r["activity_type"], ACTIVITY_TYPE_CONFIG["ONE_TIME"])
                color = config["color"]
                alpha = config["alpha"]
                edge = color
                if r.get("is_frozen"):
                    alpha = STYLE["frozen_alpha"]
                    edge = STYLE["frozen_edge_color"]
                if r["activity_type"] == MILESTONE:
                    ax.plot(r["start_day"], y_pos, "D", color=color, markersize=9, zorder=6,
                            markeredgecolor="white", markeredgewidth=0.8)
                else:
                    draw_rounded_bar(ax, r["start_day"] - 0.5, y_pos,
                                     r["end_day"] - r["start_day"] + 1,
                                     STYLE["bar_height"], color, alpha=alpha,
                                     edgecolor=edge, linestyle=config["linestyle"])

            last = lane[-1]
            display = name if len(name) <= 40 else name[:37] + "..."
            if len(lane) > 1:
                label = f"{display} ({len(lane)}x)"
            elif last["activity_type"] == MILESTONE:
                label = f"{display} (milestone)"
            else:
                label = f"{display} {last['duration_days']:.4g}d"
            if last.get("status") == "completed":
                label += " ✔"
            ax.text(last["end_day"] + 0.7, y_pos, label, va="center", ha="left",
                    fontsize=STYLE["small_size"],
                    color=STYLE["text_muted"] if last.get("is_frozen") else STYLE["text_primary"],
                    clip_on=True, zorder=5)

            y_ticks.append(y_pos)
            y_labels.append("")
            y_colors.append(owner_color)
            y_pos -= 1

    ax.set_yticks(y_ticks)
    ax.set_yticklabels(y_labels, fontsize=STYLE["tick_size"])
    for tick_label, color in zip(ax.get_yticklabels(), y_colors):
        if tick_label.get_text():
            tick_label.set_fontweight("bold")
            tick_label.set_fontsize(STYLE["label_size"])
            tick_label.set_color(color)

    ax.set_xlim(0.5, total_days + max(6, total_days * 0.25))
    ax.set_ylim(-0.5, total_rows + 0.3)
    ax.set_xticks(range(1, total_days + 1, max(1, total_days // 40)))
    ax.tick_params(axis="x", labelsize=STYLE["tick_size"])
    style_axes(ax, title="Sprint View", xlabel="Working day", show_grid_x=True)

    present = [t for t in ACTIVITY_TYPES if any(r["activity_type"] == t for r in rows)]
    legend_handles = []
    for activity_type in present:
        config = ACTIVITY_TYPE_CONFIG[activity_type]
        if activity_type == MILESTONE:
            legend_handles.append(plt.Line2D([0], [0], marker="D", color="w",
                                             markerfacecolor=config["color"], markersize=7,
                                             label=config["label"]))
        else:
            legend_handles.append(mpatches.Patch(facecolor=config["color"], edgecolor=config["color"],
                                                 alpha=config["alpha"], linestyle=config["linestyle"],
                                                 label=config["label"]))
    if any(r.get("is_frozen") for r in rows):
        legend_handles.append(mpatches.Patch(facecolor="#888888", edgecolor=STYLE["frozen_edge_color"],
                                             alpha=STYLE["frozen_alpha"], label="Completed (frozen)"))
    ax.legend(handles=legend_handles, loc="upper center",
              bbox_to_anchor=(0.5, -0.08), ncol=min(5, max(2, len(legend_handles))),
              fontsize=STYLE["small_size"], frameon=True,
              framealpha=0.95, edgecolor=STYLE["grid_color"], fancybox=True)

    subtitle = f"Project start {schedule['project_start_date']}"
    add_header_footer(fig, f"Sprint Chart: {total_weeks} weeks ({total_days} working days)",
                      subtitle, generated_at=schedule.get("metadata", {}).get("scheduled_at")
                      or schedule.get("report_generated_at"))

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    fig.savefig(output_path, dpi=STYLE["dpi"], bbox_inches="tight", facecolor=STYLE["bg_color"])
    plt.close(fig)
    print(f"  Sprint chart saved: {output_path}")


# ── Chart: Owner Day Occupancy ──────────────────────────────────────────────

def render_occupancy(day_view, output_path):
    """Render the per-owner, per-day occupancy heatmap (empty / occupied / overloaded)."""
    apply_style()

    frame = occupancy_frame(day_view)
    if frame.empty or not len(frame.columns):
        print("  No occupancy data. Check: the schedule has at least one task.")
        return

    counts = frame.to_numpy(dtype=int)
    levels = np.minimum(counts, 2)
    cmap = ListedColormap([STYLE["empty_color"], STYLE["occupied_color"], STYLE["overloaded_color"]])

    n_owners, n_days = counts.shape
    fig_height = max(4, n_owners * 0.6 + 2.5)
    fig = plt.figure(figsize=(STYLE["fig_width"], fig_height), facecolor=STYLE["bg_color"])
    ax = fig.add_axes([0.16, 0.15, 0.80, 0.70])
    ax.imshow(levels, cmap=cmap, vmin=0, vmax=2, aspect="auto")

    # Overload counts inside red cells
    for i, j in zip(*np.nonzero(counts > 1)):
        ax.text(j, i, str(counts[i, j]), ha="center", va="center",
                fontsize=STYLE["small_size"], color="white", fontweight="bold")

    for week in range(1, day_view["total_weeks"]):
        ax.axvline(week * WORKING_DAYS_PER_WEEK - 0.5, color="white", linewidth=2.5)

    stats = {u["user_name"]: u["stats"] for u in day_view["users"]}
    ax.set_yticks(range(n_owners))
    ax.set_yticklabels([f"{owner} ({stats[owner]['utilization']:.4g}%)" for owner in frame.index],
                       fontsize=STYLE["tick_size"])
    for tick_label, owner in zip(ax.get_yticklabels(), frame.index):
        if stats[owner]["has_overload"]:
            tick_label.set_color(STYLE["overloaded_color"])
            tick_label.set_fontweight("bold")

    if n_days <= 60:
        ax.set_xticks(range(n_days))
        ax.set_xticklabels([DAY_NAMES[(d - 1) % WORKING_DAYS_PER_WEEK][0] for d in frame.columns],
                           fontsize=STYLE["small_size"])
    ax.set_xticks([week_to_day(w) + 1 for w in range(1, day_view["total_weeks"] + 1)], minor=True)
    ax.set_xticklabels([f"W{w}" for w in range(1, day_view["total_weeks"] + 1)], minor=True)
    ax.tick_params(axis="x", which="minor", pad=14, length=0, labelsize=STYLE["tick_size"])
    style_axes(ax, title="Owner Day Occupancy")

    legend_handles = [
        mpatches.Patch(facecolor=STYLE["empty_color"], edgecolor=STYLE["grid_color"], label="Free"),
        mpatches.Patch(facecolor=STYLE["occupied_color"], label="Occupied"),
        mpatches.Patch(facecolor=STYLE["overloaded_color"], label="Overloaded (2+ tasks)"),
    ]
    ax.legend(handles=legend_handles, loc="upper center", bbox_to_anchor=(0.5, -0.12),
              ncol=3, fontsize=STYLE["small_size"], framealpha=0.9,
              edgecolor=STYLE["grid_color"], fancybox=True)

    add_header_footer(fig, f"Team Occupancy: {day_view['total_weeks']} weeks",
                      f"{n_owners} owner{'s' if n_owners != 1 else ''}, {n_days} working days",
                      generated_at=day_view["metadata"]["generated_at"])

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    fig.savefig(output_path, dpi=STYLE["dpi"], bbox_inches="tight", facecolor=STYLE["bg_color"])
    plt.close(fig)
    print(f"  Occupancy chart saved: {output_path}")


# ── Executive Summary ────────────────────────────────────────────────────────

def print_summary(schedule, day_view, report=None):
    """Print executive summary statistics to console."""
    rows = schedule["scheduled_tasks"]
    owners = schedule["owner_timelines"]

    print()
    print("=" * 60)
    print("  SPRINT SUMMARY")
    print("=" * 60)
    print(f"  Tasks:         {len(rows)} row{'s' if len(rows) != 1 else ''} "
          f"across {len(owners)} owner{'s' if len(owners) != 1 else ''}")
    print(f"  Timeline:      {schedule['total_project_weeks']} weeks "
          f"({schedule['total_project_days']} working days) from {schedule['project_start_date']}")

    print()
    print("  By activity type:")
    for activity_type in ACTIVITY_TYPES:
        count = sum(1 for r in rows if r["activity_type"] == activity_type)
        if count:
            print(f"    {activity_type}: {count}")

    if day_view["users"]:
        print()
        print("  Utilisation:")
        for user in day_view["users"]:
            s = user["stats"]
            print(f"    {user['user_name']}: {s['occupied_days']} / {day_view['total_days']} days "
                  f"({s['utilization']:.4g}%)")

    overloaded = [u for u in day_view["users"] if u["stats"]["has_overload"]]
    if overloaded:
        print()
        print(f"  Overloaded:    {len(overloaded)} owner{'s' if len(overloaded) != 1 else ''}")
        for user in overloaded:
            frame_days = [cell["absolute_day"] for week in user["weeks"] for cell in week["days"]
                          if len(cell["tasks"]) > 1]
            shown = ", ".join(f"day {d}" for d in frame_days[:5])
            suffix = f" ... +{len(frame_days) - 5} more" if len(frame_days) > 5 else ""
            print(f"    WARNING: {user['user_name']} has {user['stats']['overlapping_days']} "
                  f"overlapping day(s): {shown}{suffix}")

    idle = [owner for owner, t in owners.items() if t["total_tasks"] == 0]
    if idle:
        print()
        print(f"  Idle:          {', '.join(idle)} (no tasks assigned)")

    if report:
        s = report["stats"]
        print()
        print(f"  Completion:    {s['completed_count']} of {s['total_tasks']} rows complete "
              f"({s['completion_rate']}%), {s['active_count']} active")

    for warning in day_view.get("warnings", []):
        print(f"  WARNING: {warning}")

    print("=" * 60)
    print()


def write_json(data, output_path):
    """Write any schedule/report/day-view structure as indented JSON."""
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    print(f"  JSON saved: {output_path}")


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="SprintView Planning Tool: level tasks per owner and chart team occupancy"
    )
    parser.add_argument(
        "--template", action="store_true",
        help="Generate an Excel template with example data"
    )
    parser.add_argument(
        "--input", default=DEFAULT_INPUT,
        help="Path to .xlsx or .json input file (default: sprint_data.xlsx)"
    )
    parser.add_argument(
        "--outdir", default=DEFAULT_OUTDIR,
        help="Output directory for charts, summary and JSON (default: output/)"
    )
    parser.add_argument(
        "--mode", default="schedule", choices=["schedule", "report"],
        help="schedule: level every task; report: freeze completed tasks and list the full team"
    )
    parser.add_argument(
        "--charts", default=["all"], nargs="+",
        choices=["all", "sprint", "occupancy", "none"],
        help="Which charts to generate (default: all)"
    )
    parser.add_argument(
        "--expand-recurring", action="store_true",
        help="Expand RECURRING_WEEKLY tasks into one row per week"
    )
    parser.add_argument(
        "--reserve-pinned", action="store_true",
        help="Tasks with an explicit start date also block their owner's timeline"
    )
    parser.add_argument(
        "--today", default=None,
        help="Pin the current date (YYYY-MM-DD) for reproducible output"
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Also write schedule.json and day_view.json"
    )
    args = parser.parse_args(argv)

    if args.template:
        generate_template(args.input)
        return

    if not os.path.exists(args.input):
        print(f"Error: Input file not found: {args.input}")
        print("Run with --template first to create a template.")
        sys.exit(1)

    clock = datetime.now
    if args.today:
        try:
            pinned_today = datetime.strptime(args.today, "%Y-%m-%d")
        except ValueError:
            print(f"  ERROR: Invalid --today date '{args.today}'. Use YYYY-MM-DD format.")
            sys.exit(1)
        clock = lambda: pinned_today

    # Load
    print(f"Loading data from: {args.input}")
    team, tasks = load_data(args.input)
    print(f"  Team: {', '.join(team) if team else '(none)'}")
    print(f"  Tasks: {len(tasks)}")

    # Validate
    errors, warnings = validate_tasks(tasks, team)
    for w in warnings:
        print(f"  WARNING: {w}")
    if errors:
        for e in errors:
            print(f"  ERROR: {e}")
        sys.exit(1)

    # Schedule
    report = None
    if args.mode == "report":
        # frozen rows stay at their recorded dates; stats count the expanded rows
        report = schedule_final_report(tasks, team=team, clock=clock,
                                       reserve_pinned=args.reserve_pinned,
                                       expand_recurring=args.expand_recurring)
        schedule = report
    else:
        schedule = schedule_tasks(fan_out_tasks(tasks), clock=clock,
                                  reserve_pinned=args.reserve_pinned)
    if args.expand_recurring and report is None:
        schedule["scheduled_tasks"] = expand_recurring_tasks(
            schedule["scheduled_tasks"], schedule["total_project_weeks"],
            schedule["project_start_date"])
    day_view = build_occupancy_grid(schedule["scheduled_tasks"], schedule["total_project_weeks"],
                                    schedule["project_start_date"], clock)
    print(f"  Weeks covered: {schedule['total_project_weeks']}")

    # Summary (captured for summary.txt)
    summary_capture = io.StringIO()
    _orig_stdout = sys.stdout
    sys.stdout = _TeeWriter(_orig_stdout, summary_capture)
    try:
        print_summary(schedule, day_view, report)
    finally:
        sys.stdout = _orig_stdout
    summary_text = summary_capture.getvalue()

    charts = args.charts
    gen_all = "all" in charts
    output_files = []

    if gen_all or "sprint" in charts:
        sprint_path = os.path.join(args.outdir, "sprint_chart.png")
        render_sprint_chart(schedule, sprint_path)
        output_files.append(sprint_path)

    if gen_all or "occupancy" in charts:
        occupancy_path = os.path.join(args.outdir, "occupancy.png")
        render_occupancy(day_view, occupancy_path)
        output_files.append(occupancy_path)

    if args.json:
        schedule_path = os.path.join(args.outdir, "schedule.json")
        day_view_path = os.path.join(args.outdir, "day_view.json")
        write_json(schedule, schedule_path)
        write_json(day_view, day_view_path)
        output_files.extend([schedule_path, day_view_path])

    os.makedirs(args.outdir, exist_ok=True)
    summary_path = os.path.join(args.outdir, "summary.txt")
    with open(summary_path, "w", encoding="utf-8") as sf:
        sf.write(summary_text)
    output_files.append(summary_path)

    if output_files:
        print()
        print("  Output:")
        for f in output_files:
            print(f"    {os.path.abspath(f)}")
    print("\nDone.")


if __name__ == "__main__":
    main()
