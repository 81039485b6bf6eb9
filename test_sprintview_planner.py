"""Automated test suite for sprintview_planner.py.

Covers: column matching, validation, Excel/JSON loading, owner fan-out,
template round-trip, summary output, chart smoke tests, and the CLI.
"""

import json
import os
import tempfile
from datetime import datetime

import matplotlib.pyplot as plt
import pandas as pd
import pytest
from openpyxl import Workbook, load_workbook

from sprintview_planner import (
    ACTIVITY_TYPE_CONFIG,
    apply_style,
    TASK_COLUMNS,
    clean_str,
    fan_out_tasks,
    generate_template,
    load_data,
    load_json_tasks,
    load_tasks,
    load_team,
    main,
    normalize_columns,
    occupancy_frame,
    print_summary,
    render_occupancy,
    render_sprint_chart,
    split_owners,
    style_axes,
    validate_tasks,
    write_json,
)
from sprintview_scheduler import (
    ACTIVITY_TYPES,
    build_occupancy_grid,
    build_sprint_plan,
    schedule_final_report,
    schedule_tasks,
)


# ── Fixtures ────────────────────────────────────────────────────────────────


def fixed_clock():
    return datetime(2026, 3, 4, 9, 30)


def create_test_excel(team_rows, task_rows, task_header=None):
    """Create a temp Excel file with Team and Tasks sheets. Returns filepath."""
    wb = Workbook()

    ws_team = wb.active
    ws_team.title = "Team"
    ws_team.append(["Name", "Role"])
    for row in team_rows:
        ws_team.append(row)

    ws_tasks = wb.create_sheet("Tasks")
    ws_tasks.append(task_header or TASK_COLUMNS)
    for row in task_rows:
        ws_tasks.append(row)

    tmpdir = tempfile.mkdtemp()
    filepath = os.path.join(tmpdir, "sprint_data.xlsx")
    wb.save(filepath)
    return filepath


def create_test_json(payload):
    tmpdir = tempfile.mkdtemp()
    filepath = os.path.join(tmpdir, "sprint_data.json")
    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(payload, f)
    return filepath


def task(name, owner, duration=None, activity_type=None, **extra):
    t = {"name": name, "owner": owner, "assigned_to": [owner] if owner else [],
         "duration_estimate": duration, "activity_type": activity_type}
    t.update(extra)
    return t


@pytest.fixture
def basic_excel():
    """Two team members, four tasks (one multi-owner, one completed)."""
    return create_test_excel(
        team_rows=[["Alice", "Backend"], ["Bob", "Frontend"]],
        task_rows=[
            ["DB Design", "Alice", 5, "ONE_TIME", None, None, "2026-03-02", "2026-03-06", "completed"],
            ["Pairing", "Alice, Bob", 3, "one time", None, None, None, None, "in_progress"],
            ["Standup", "Bob", None, "RECURRING_WEEKLY", None, None, None, None, None],
            ["Review", "Bob", 4, "PARALLEL_ALLOWED", None, None, None, None, None],
        ],
    )


@pytest.fixture
def overload_plan():
    tasks = [task("Code Review", "Eve", 10, "PARALLEL_ALLOWED"), task("Main Dev", "Eve", 10),
             task("Backend", "Bob", 8)]
    return build_sprint_plan(fan_out_tasks(tasks), clock=fixed_clock)


# ── Tier 1: Pure Unit Tests ─────────────────────────────────────────────────


class TestCleanStr:

    def test_none(self):
        assert clean_str(None) == ""

    def test_nan(self):
        assert clean_str(float("nan")) == ""

    def test_strips(self):
        assert clean_str("  Alice ") == "Alice"

    def test_number(self):
        assert clean_str(5) == "5"


class TestSplitOwners:

    def test_comma_separated(self):
        assert split_owners("Alice, Bob ,Carol") == ["Alice", "Bob", "Carol"]

    def test_duplicates_dropped(self):
        assert split_owners("Alice, Alice") == ["Alice"]

    def test_blank(self):
        assert split_owners(float("nan")) == []


class TestNormalizeColumns:
    """Sheet headers match regardless of case and padding."""

    def test_case_insensitive(self):
        df = pd.DataFrame(columns=[" task ", "OWNER", "activity type"])
        missing = normalize_columns(df, {"Task", "Owner", "Activity Type"})
        assert missing == set()
        assert list(df.columns) == ["Task", "Owner", "Activity Type"]

    def test_reports_missing(self):
        df = pd.DataFrame(columns=["Task"])
        assert normalize_columns(df, {"Task", "Owner"}) == {"Owner"}

    def test_unknown_columns_kept(self):
        df = pd.DataFrame(columns=["Task", "Notes"])
        normalize_columns(df, {"Task"})
        assert "Notes" in df.columns


class TestActivityTypeConfig:

    def test_every_type_has_style(self):
        assert set(ACTIVITY_TYPE_CONFIG) == set(ACTIVITY_TYPES)

    def test_buffer_is_dashed(self):
        assert ACTIVITY_TYPE_CONFIG["BUFFER"]["linestyle"] == "--"


# ── Tier 2: Validation Tests ────────────────────────────────────────────────


class TestValidateTasks:

    def test_valid(self):
        errors, warnings = validate_tasks([task("Build", "Alice", 3, "ONE_TIME")], ["Alice"])
        assert errors == []
        assert warnings == []

    def test_empty_list(self):
        errors, _ = validate_tasks([])
        assert "No tasks found" in errors[0]

    def test_missing_name(self):
        errors, _ = validate_tasks([task("", "Alice", 3)])
        assert any("name is required" in e for e in errors)

    def test_missing_owner(self):
        errors, _ = validate_tasks([task("Build", "", 3)])
        assert any("no owner" in e for e in errors)

    def test_negative_duration(self):
        errors, _ = validate_tasks([task("Build", "Alice", -2)])
        assert any("must be zero or more" in e for e in errors)

    def test_non_numeric_duration(self):
        errors, _ = validate_tasks([task("Build", "Alice", "three")])
        assert any("not a number" in e for e in errors)

    def test_zero_duration_allowed(self):
        errors, _ = validate_tasks([task("Sign-off", "Alice", 0)])
        assert errors == []

    def test_unknown_activity_type_with_hint(self):
        errors, _ = validate_tasks([task("Build", "Alice", 3, "ONETIME")])
        assert any("Invalid activity type 'ONETIME'" in e and "ONE_TIME" in e for e in errors)

    def test_quarter_day_warns(self):
        errors, warnings = validate_tasks([task("Build", "Alice", 1.25)])
        assert errors == []
        assert any("half-day" in w for w in warnings)

    def test_half_day_ok(self):
        _, warnings = validate_tasks([task("Build", "Alice", 2.5)])
        assert warnings == []

    def test_owner_not_in_team_warns(self):
        errors, warnings = validate_tasks([task("Build", "Zed", 3)], ["Alice"])
        assert errors == []
        assert any("'Zed' not in Team" in w for w in warnings)

    def test_due_before_start_warns(self):
        _, warnings = validate_tasks([task("Build", "Alice", 3, start_date="2026-03-10",
                                           due_date="2026-03-02")])
        assert any("before start date" in w for w in warnings)

    def test_bad_date_is_error(self):
        errors, _ = validate_tasks([task("Build", "Alice", 3, start_date="someday")])
        assert any("Cannot parse date" in e for e in errors)

    def test_unknown_progress_warns(self):
        _, warnings = validate_tasks([task("Build", "Alice", 3, progress="done")])
        assert any("Progress 'done'" in w for w in warnings)

    def test_row_number_in_message(self):
        errors, _ = validate_tasks([task("", "Alice", 3, _row=7)])
        assert errors[0].startswith("Row 7:")


class TestFanOut:

    def test_one_row_per_owner(self):
        rows = fan_out_tasks([{"name": "Pair", "owner": "Alice", "assigned_to": ["Alice", "Bob"]}])
        assert [r["owner"] for r in rows] == ["Alice", "Bob"]
        assert all(r["is_multi_user"] for r in rows)
        assert rows[1]["all_owners"] == ["Alice", "Bob"]

    def test_single_owner_without_assignees(self):
        rows = fan_out_tasks([{"name": "Solo", "owner": "Carol"}])
        assert len(rows) == 1
        assert rows[0]["owner"] == "Carol"
        assert rows[0]["is_multi_user"] is False

    def test_input_not_mutated(self):
        source = {"name": "Pair", "owner": "Alice", "assigned_to": ["Alice", "Bob"]}
        fan_out_tasks([source])
        assert source["owner"] == "Alice"
        assert "all_owners" not in source

    def test_fanned_rows_level_independently(self):
        rows = fan_out_tasks([task("First", "Bob", 2),
                              {"name": "Pair", "owner": "Alice", "assigned_to": ["Alice", "Bob"],
                               "duration_estimate": 3}])
        scheduled = schedule_tasks(rows, clock=fixed_clock)["scheduled_tasks"]
        pair = {r["owner"]: r for r in scheduled if r["name"] == "Pair"}
        assert pair["Alice"]["start_day"] == 1
        assert pair["Bob"]["start_day"] == 3


# ── Tier 3: Integration Tests (Excel / JSON I/O) ────────────────────────────


class TestLoadTeam:

    def test_names_in_order(self, basic_excel):
        assert load_team(basic_excel) == ["Alice", "Bob"]

    def test_missing_sheet_is_empty(self):
        wb = Workbook()
        wb.active.title = "Tasks"
        path = os.path.join(tempfile.mkdtemp(), "no_team.xlsx")
        wb.save(path)
        assert load_team(path) == []


class TestLoadTasks:

    def test_loads_rows(self, basic_excel):
        tasks = load_tasks(basic_excel)
        assert [t["name"] for t in tasks] == ["DB Design", "Pairing", "Standup", "Review"]

    def test_multi_owner_split(self, basic_excel):
        pairing = load_tasks(basic_excel)[1]
        assert pairing["assigned_to"] == ["Alice", "Bob"]
        assert pairing["owner"] == "Alice"

    def test_activity_type_normalised(self, basic_excel):
        assert load_tasks(basic_excel)[1]["activity_type"] == "ONE_TIME"

    def test_blank_duration_is_none(self, basic_excel):
        assert load_tasks(basic_excel)[2]["duration_estimate"] is None

    def test_dates_and_completion(self, basic_excel):
        design = load_tasks(basic_excel)[0]
        assert design["actual_start_date"] == datetime(2026, 3, 2)
        assert design["actual_end_date"] == datetime(2026, 3, 6)
        assert design["completed"] is True
        assert design["start_date"] is None

    def test_row_numbers(self, basic_excel):
        assert [t["_row"] for t in load_tasks(basic_excel)] == [2, 3, 4, 5]

    def test_blank_rows_skipped(self):
        path = create_test_excel([["Alice", "Dev"]], [
            ["Build", "Alice", 3, None, None, None, None, None, None],
            [None, None, None, None, None, None, None, None, None],
            ["Test", "Alice", 2, None, None, None, None, None, None],
        ])
        assert [t["name"] for t in load_tasks(path)] == ["Build", "Test"]

    def test_bad_date_row_skipped_with_warning(self, capsys):
        path = create_test_excel([["Alice", "Dev"]], [
            ["Build", "Alice", 3, None, "not a date", None, None, None, None],
            ["Test", "Alice", 2, None, None, None, None, None, None],
        ])
        tasks = load_tasks(path)
        assert [t["name"] for t in tasks] == ["Test"]
        out = capsys.readouterr().out
        assert "WARNING: Could not parse row 2" in out

    def test_missing_required_column(self, capsys):
        path = create_test_excel([["Alice", "Dev"]], [["Build", 3]], task_header=["Task", "Duration"])
        assert load_tasks(path) == []
        assert "missing column(s): Owner" in capsys.readouterr().out

    def test_headers_matched_case_insensitively(self):
        header = [c.upper() for c in TASK_COLUMNS]
        path = create_test_excel([["Alice", "Dev"]], [
            ["Build", "Alice", 3, "BUFFER", None, None, None, None, None],
        ], task_header=header)
        tasks = load_tasks(path)
        assert tasks[0]["activity_type"] == "BUFFER"


class TestLoadJson:

    @pytest.fixture
    def json_path(self):
        return create_test_json({
            "team": [{"name": "Alice"}, "Bob"],
            "tasks": [
                {"taskName": "Build", "taskOwner": "Alice", "tentativeEtaDays": 3,
                 "activityType": "ONE_TIME", "startDate": "2026-03-02T00:00:00.000Z"},
                {"title": "Pair", "assignedTo": [{"name": "Alice"}, {"name": "Bob"}],
                 "estimatedDays": 2},
            ],
        })

    def test_team(self, json_path):
        team, _ = load_json_tasks(json_path)
        assert team == ["Alice", "Bob"]

    def test_aliases_mapped(self, json_path):
        _, tasks = load_json_tasks(json_path)
        assert tasks[0]["name"] == "Build"
        assert tasks[0]["owner"] == "Alice"
        assert tasks[0]["duration_estimate"] == 3
        assert tasks[0]["start_date"] == "2026-03-02T00:00:00.000Z"

    def test_owner_from_assignees(self, json_path):
        _, tasks = load_json_tasks(json_path)
        assert tasks[1]["owner"] == "Alice"
        assert tasks[1]["assigned_to"] == ["Alice", "Bob"]

    def test_plain_list_payload(self):
        path = create_test_json([{"name": "Solo", "owner": "Carol", "duration_estimate": 1}])
        team, tasks = load_json_tasks(path)
        assert team == []
        assert tasks[0]["owner"] == "Carol"

    def test_load_data_dispatches_on_extension(self, json_path, basic_excel):
        assert load_data(json_path)[0] == ["Alice", "Bob"]
        assert len(load_data(basic_excel)[1]) == 4

    def test_json_tasks_validate_and_schedule(self, json_path):
        team, tasks = load_json_tasks(json_path)
        errors, _ = validate_tasks(tasks, team)
        assert errors == []
        result = schedule_tasks(fan_out_tasks(tasks), clock=fixed_clock)
        assert result["project_start_date"] == "2026-03-02"
        assert len(result["scheduled_tasks"]) == 3


class TestTemplateRoundtrip:
    """Generated template loads and validates cleanly."""

    def test_template_loads(self, tmp_path):
        path = str(tmp_path / "template.xlsx")
        generate_template(path)
        team, tasks = load_data(path)
        assert team == ["Alice", "Bob", "Carol", "Dave"]
        assert len(tasks) == 10
        errors, _ = validate_tasks(tasks, team)
        assert errors == []

    def test_template_multi_owner_row(self, tmp_path):
        path = str(tmp_path / "template.xlsx")
        generate_template(path)
        standup = next(t for t in load_tasks(path) if t["name"] == "Weekly Standup")
        assert standup["assigned_to"] == ["Alice", "Bob", "Carol"]

    def test_template_has_dropdowns(self, tmp_path):
        path = str(tmp_path / "template.xlsx")
        generate_template(path)
        ws = load_workbook(path)["Tasks"]
        assert len(ws.data_validations.dataValidation) == 3

    def test_template_schedules(self, tmp_path):
        path = str(tmp_path / "template.xlsx")
        generate_template(path)
        team, tasks = load_data(path)
        report = schedule_final_report(tasks, team=team, clock=fixed_clock)
        assert report["stats"]["completed_count"] == 1
        assert set(report["owner_timelines"]) == {"Alice", "Bob", "Carol", "Dave"}


# ── Tier 4: Output Tests ────────────────────────────────────────────────────


class TestOccupancyFrame:

    def test_counts(self, overload_plan):
        frame = occupancy_frame(overload_plan["day_view"])
        assert list(frame.index) == ["Bob", "Eve"]
        assert list(frame.columns) == list(range(1, 11))
        assert frame.loc["Eve"].tolist() == [2] * 10
        assert frame.loc["Bob"].sum() == 8
        assert frame.index.name == "owner"

    def test_empty(self):
        frame = occupancy_frame(build_occupancy_grid([], 0, clock=fixed_clock))
        assert frame.empty


class TestPrintSummary:

    def test_schedule_summary(self, overload_plan, capsys):
        print_summary(overload_plan["schedule"], overload_plan["day_view"])
        out = capsys.readouterr().out
        assert "SPRINT SUMMARY" in out
        assert "2 weeks (10 working days) from 2026-03-02" in out
        assert "PARALLEL_ALLOWED: 1" in out
        assert "Bob: 8 / 10 days (80%)" in out
        assert "WARNING: Eve has 10 overlapping day(s)" in out
        assert "Completion:" not in out

    def test_report_summary(self, capsys):
        tasks = [task("Design", "Alice", 5, completed=True,
                      actual_start_date="2026-03-02", actual_end_date="2026-03-06"),
                 task("Build", "Alice", 10)]
        report = schedule_final_report(tasks, team=["Alice", "Carol"], clock=fixed_clock)
        day_view = build_occupancy_grid(report["scheduled_tasks"], report["total_project_weeks"],
                                        report["project_start_date"], fixed_clock)
        print_summary(report, day_view, report)
        out = capsys.readouterr().out
        assert "Idle:          Carol" in out
        assert "1 of 2 rows complete (50%), 1 active" in out

    def test_grid_warnings_printed(self, capsys):
        schedule = schedule_tasks([task("Build", "Alice", 3)], clock=fixed_clock)
        day_view = {"users": [], "total_days": 5, "warnings": ["Alice: 'Build' day 9 is outside"]}
        print_summary(schedule, day_view)
        assert "WARNING: Alice: 'Build' day 9" in capsys.readouterr().out


class TestStyleHelpers:

    def test_apply_style_sets_nearest_interpolation(self):
        apply_style()
        assert plt.rcParams["image.interpolation"] == "nearest"

    def test_style_axes_labels_and_spines(self):
        fig, ax = plt.subplots()
        style_axes(ax, title="Sprint View", xlabel="Working day", show_grid_x=True)
        assert ax.get_title(loc="left") == "Sprint View"
        assert ax.get_xlabel() == "Working day"
        assert not ax.spines["top"].get_visible()
        assert not ax.spines["right"].get_visible()
        plt.close(fig)


class TestRenderSmoke:
    """Each render function produces a non-empty PNG."""

    def test_sprint_chart(self, overload_plan, tmp_path):
        p = str(tmp_path / "sprint.png")
        render_sprint_chart(overload_plan["schedule"], p)
        assert os.path.exists(p)
        assert os.path.getsize(p) > 0

    def test_sprint_chart_all_types(self, tmp_path):
        tasks = [task(f"{t.title()} task", "Ann" if i % 2 else "Ben", 2, t)
                 for i, t in enumerate(ACTIVITY_TYPES)]
        plan = build_sprint_plan(tasks, clock=fixed_clock, expand_recurring=True)
        p = str(tmp_path / "sprint.png")
        render_sprint_chart(plan["schedule"], p)
        assert os.path.getsize(p) > 0

    def test_sprint_chart_report(self, tmp_path):
        report = schedule_final_report(
            [task("Design", "Alice", 5, completed=True,
                  actual_start_date="2026-03-02", actual_end_date="2026-03-06"),
             task("Build", "Alice", 10)],
            team=["Alice", "Carol"], clock=fixed_clock)
        p = str(tmp_path / "report.png")
        render_sprint_chart(report, p)
        assert os.path.getsize(p) > 0

    def test_occupancy(self, overload_plan, tmp_path):
        p = str(tmp_path / "occupancy.png")
        render_occupancy(overload_plan["day_view"], p)
        assert os.path.exists(p)
        assert os.path.getsize(p) > 0

    def test_empty_schedule_skips(self, tmp_path, capsys):
        p = str(tmp_path / "sprint.png")
        render_sprint_chart(schedule_tasks([], clock=fixed_clock), p)
        render_occupancy(build_occupancy_grid([], 0, clock=fixed_clock), str(tmp_path / "occ.png"))
        assert not os.path.exists(p)
        out = capsys.readouterr().out
        assert "No sprint data" in out
        assert "No occupancy data" in out


class TestWriteJson:

    def test_schedule_serialises(self, overload_plan, tmp_path):
        p = str(tmp_path / "nested" / "schedule.json")
        write_json(overload_plan["schedule"], p)
        with open(p, encoding="utf-8") as f:
            data = json.load(f)
        assert data["total_project_days"] == 10
        assert data["metadata"]["scheduled_at"] == "2026-03-04T09:30:00"


# ── Tier 5: End-to-End Tests ────────────────────────────────────────────────


class TestMain:

    def test_full_run(self, basic_excel, tmp_path, capsys):
        outdir = str(tmp_path / "out")
        main(["--input", basic_excel, "--outdir", outdir, "--today", "2026-03-04",
              "--json", "--expand-recurring"])
        for name in ["sprint_chart.png", "occupancy.png", "summary.txt",
                     "schedule.json", "day_view.json"]:
            p = os.path.join(outdir, name)
            assert os.path.exists(p), f"Missing: {p}"
            assert os.path.getsize(p) > 0, f"Empty: {p}"
        with open(os.path.join(outdir, "summary.txt"), encoding="utf-8") as f:
            assert "SPRINT SUMMARY" in f.read()
        with open(os.path.join(outdir, "schedule.json"), encoding="utf-8") as f:
            schedule = json.load(f)
        assert schedule["project_start_date"] == "2026-03-02"
        assert "Done." in capsys.readouterr().out

    def test_report_mode(self, basic_excel, tmp_path, capsys):
        outdir = str(tmp_path / "out")
        main(["--input", basic_excel, "--outdir", outdir, "--today", "2026-03-04",
              "--mode", "report", "--charts", "none"])
        assert os.path.exists(os.path.join(outdir, "summary.txt"))
        assert not os.path.exists(os.path.join(outdir, "sprint_chart.png"))
        assert "rows complete" in capsys.readouterr().out

    def test_report_mode_expands_active_recurring(self, basic_excel, tmp_path):
        outdir = str(tmp_path / "out")
        main(["--input", basic_excel, "--outdir", outdir, "--today", "2026-03-04",
              "--mode", "report", "--expand-recurring", "--json", "--charts", "none"])
        with open(os.path.join(outdir, "schedule.json"), encoding="utf-8") as f:
            schedule = json.load(f)
        rows = schedule["scheduled_tasks"]
        assert schedule["stats"]["total_tasks"] == len(rows)
        assert schedule["stats"]["completed_count"] == 1
        standups = [r for r in rows if r["name"].startswith("Standup")]
        assert len(standups) >= 2
        assert all(r["recurrence"] == "occurrence" for r in standups)
        design = [r for r in rows if r["name"] == "DB Design"]
        assert len(design) == 1
        assert design[0]["is_frozen"] is True

    def test_validation_errors_exit(self, tmp_path, capsys):
        path = create_test_excel([["Alice", "Dev"]], [
            ["Build", "Alice", 3, "SOMETIMES", None, None, None, None, None],
        ])
        with pytest.raises(SystemExit) as exc:
            main(["--input", path, "--outdir", str(tmp_path)])
        assert exc.value.code == 1
        assert "ERROR: Row 2: Invalid activity type 'SOMETIMES'" in capsys.readouterr().out

    def test_missing_input_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["--input", str(tmp_path / "nope.xlsx")])

    def test_bad_today_exits(self, basic_excel, tmp_path):
        with pytest.raises(SystemExit):
            main(["--input", basic_excel, "--outdir", str(tmp_path), "--today", "04/03/2026"])

    def test_template_flag(self, tmp_path):
        path = str(tmp_path / "new.xlsx")
        main(["--template", "--input", path])
        assert os.path.exists(path)
