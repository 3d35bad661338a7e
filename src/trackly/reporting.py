"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from .models import Project, TimeEntry
from .store import Stores
from .timing import display_elapsed_seconds, format_duration, period_start


@dataclass(slots=True)
class ProjectTotal:
    project: Project
    seconds: int
    planned_seconds: Optional[int] = None


def aggregate_by_project(
    entries: Iterable[TimeEntry], projects: Iterable[Project]
) -> dict[str, int]:
    totals: defaultdict[str, int] = defaultdict(int)
    known = {project.id for project in projects}
    for entry in entries:
        if entry.project_id in known:
            totals[entry.project_id] += entry.duration
    return dict(totals)


def project_totals(
    entries: Iterable[TimeEntry],
    projects: list[Project],
    *,
    days: int,
) -> list[ProjectTotal]:
    """Per-project worked seconds, with planned seconds for ``days`` when set."""
    totals = aggregate_by_project(entries, projects)
    rows = [
        ProjectTotal(
            project=project,
            seconds=totals.get(project.id, 0),
            planned_seconds=(
                int(project.planned_hours_per_day * 3600 * days)
                if project.planned_hours_per_day
                else None
            ),
        )
        for project in projects
        if totals.get(project.id) or project.planned_hours_per_day
    ]
    return sorted(rows, key=lambda row: row.seconds, reverse=True)


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, stores: Stores) -> None:
        self.stores = stores

    def print_summary(self, period: str, now: datetime) -> None:
        start = period_start(period, now)
        local_start = start.astimezone()
        days = (now.astimezone().date() - local_start.date()).days + 1
        projects = self.stores.projects.list_all()
        entries = self.stores.time_entries.list_all(since=start)

        print(f"Summary for this {period} (since {local_start.strftime('%Y-%m-%d')})")
        print("-" * 50)

        rows = project_totals(entries, projects, days=days)
        if not rows:
            print("No time recorded for the selected period.")
        total = sum(row.seconds for row in rows)
        for row in rows:
            planned = (
                f" / {format_duration(row.planned_seconds)} planned"
                if row.planned_seconds
                else ""
            )
            print(f"  {row.project.name[:30]:<30} {format_duration(row.seconds)}{planned}")
        if rows:
            print()
            print(f"Total: {format_duration(total)}")

        timer = self.stores.active_timer.get()
        if timer:
            project = self.stores.projects.get(timer.project_id)
            state = "paused" if timer.is_paused else "running"
            name = project.name if project else timer.project_id
            print(
                f"Timer {state}: {name} {format_duration(display_elapsed_seconds(timer, now))}"
            )
