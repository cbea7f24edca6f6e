"""
End-to-end walkthrough of the health calendar engine, fully in memory.

This script exercises:
1. Configuration loading
2. Offline-first creation and later sync
3. Remote snapshots from another device (including a malformed document)
4. Dose completion and reminder rescheduling
5. Deletion while offline, and the daily briefing fallback

Run with: uv run python run_demo.py
"""

import asyncio
from datetime import datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.memory.identity import StaticIdentityProvider
from adapters.memory.reminder_scheduler import InMemoryReminderScheduler
from adapters.memory.remote_store import InMemoryRemoteStore
from healthsync.config import get_config
from healthsync.domain.models import DailyAgenda, EventType, Recurrence, RemoteSnapshot
from healthsync.observability import configure_logging
from healthsync.services.health_calendar import HealthCalendarService
from healthsync.services.recurrence import format_date

console = Console()

DEMO_USER = "demo-user"


def render_agenda(agenda: DailyAgenda) -> None:
    table = Table(title=f"Agenda for {agenda.date}")
    table.add_column("Time", style="cyan")
    table.add_column("Title", style="magenta")
    table.add_column("Type", style="yellow")
    table.add_column("Status", style="green")

    for event in agenda.appointments:
        table.add_row(event.time, event.title, "appointment", "scheduled")
    for event in agenda.pending_medications:
        table.add_row(event.time, event.title, "medication", "pending")
    for event in agenda.completed_medications:
        table.add_row(event.time, event.title, "medication", "taken")

    console.print(table)
    console.print(
        f"Progress: {agenda.progress.completed}/{agenda.progress.total} medications "
        f"({agenda.progress.ratio:.0%})"
    )


def render_scheduler(scheduler: InMemoryReminderScheduler) -> None:
    table = Table(title="Pending reminders")
    table.add_column("Event", style="cyan")
    table.add_column("Fires at", style="green")
    table.add_column("Headline", style="white")
    for reminder in scheduler.pending.values():
        fire_at = datetime.fromtimestamp(reminder.fire_at_epoch_millis / 1000)
        table.add_row(
            reminder.event_id[:8], fire_at.strftime("%Y-%m-%d %I:%M %p"), reminder.payload.headline
        )
    console.print(table)


async def run_demo() -> None:
    config = get_config()
    configure_logging(config.logging)

    remote = InMemoryRemoteStore()
    scheduler = InMemoryReminderScheduler()
    identity = StaticIdentityProvider(DEMO_USER)
    service = HealthCalendarService(remote, scheduler, identity, config=config)

    today = datetime.now().date()

    async with service.session() as view:
        console.print(Panel("Offline create", style="blue"))
        remote.fail_writes = True
        vitamin = await view.add_event("Vitamin D", "1 capsule", "09:00 AM")
        await view.add_event(
            "Cardiology check-up",
            "Dr. Rivera",
            "10:30 AM",
            date=format_date(today + timedelta(days=2)),
            type=EventType.APPOINTMENT,
            recurrence=Recurrence.ONE_TIME,
        )
        await service.coordinator.flush()
        console.print(f"Synced after offline create: {vitamin.is_synced}", style="yellow")

        console.print(Panel("Back online", style="blue"))
        remote.fail_writes = False
        pushed = await service.coordinator.sync_pending()
        console.print(f"Pushed {pushed.unwrap_or(0)} pending event(s)", style="green")

        console.print(Panel("Snapshot from another device", style="blue"))
        remote.emit(
            DEMO_USER,
            RemoteSnapshot(
                documents=[
                    {
                        "id": "tablet-metformin",
                        "userId": DEMO_USER,
                        "title": "Metformin",
                        "subtitle": "500 mg with dinner",
                        "time": "07:00 PM",
                        "startDate": format_date(today - timedelta(days=3)),
                        "type": "MEDICATION",
                    },
                    {"title": "no id, skipped"},
                ]
            ),
        )
        await asyncio.sleep(0.05)
        await service.coordinator.flush()

        console.print(Panel("Take a dose", style="blue"))
        await view.toggle_taken(vitamin.id)
        await asyncio.sleep(0.05)
        render_agenda(view.agenda)
        render_scheduler(scheduler)

        console.print(Panel("Calendar strip", style="blue"))
        strip = ", ".join(
            f"{m.date[6:]}{'*' if m.has_appointment else ''}" for m in view.calendar_strip()
        )
        console.print(strip)

        briefing = await service.assistant.brief(view.agenda)
        console.print(Panel(briefing.summary, title="Daily briefing", style="green"))

        console.print(Panel("Delete while offline", style="blue"))
        remote.fail_deletes = True
        await view.delete_event("tablet-metformin")
        await service.coordinator.flush()
        await asyncio.sleep(0.05)
        console.print(
            f"Remote still has it: {'tablet-metformin' in remote.documents}; "
            f"local view shows it: {any(e.id == 'tablet-metformin' for e in view.events)}",
            style="yellow",
        )


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\nDemo stopped by user", style="yellow")
