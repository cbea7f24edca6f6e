"""
AI daily briefing for the calendar screen, using Pydantic AI.

Key decisions:
- Type-safe output: the model must return a DailyBriefing
- Non-diagnostic: the prompt only restates the user's own schedule
- Fallback strategy: any model failure or timeout yields a plain briefing
  built from the agenda, so the screen always has something to show
"""

import asyncio
from datetime import datetime

import structlog
from pydantic_ai import Agent

from healthsync.config import AssistantConfig
from healthsync.domain.models import DailyAgenda, DailyBriefing, HealthEvent
from healthsync.services.recurrence import parse_date

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = """You are a calm, supportive health schedule assistant.

You receive one day of a user's medication and appointment calendar and write
a short briefing for that day.

Rules:
1. Only describe what is on the schedule. Never diagnose, never suggest
   changing a dose or skipping a medication.
2. Mention pending medications by name and time, in time order.
3. Mention appointments with their time.
4. If everything is done, say so warmly.
5. Keep the summary under 80 words and give at most 5 highlights."""


def _describe(event: HealthEvent) -> str:
    detail = f" ({event.subtitle})" if event.subtitle else ""
    return f"{event.time} {event.title}{detail}"


def fallback_briefing(agenda: DailyAgenda) -> DailyBriefing:
    """Deterministic briefing used when the model is disabled or fails."""
    progress = agenda.progress
    highlights = [f"Take {_describe(m)}" for m in agenda.pending_medications]
    highlights += [f"Appointment: {_describe(a)}" for a in agenda.appointments]

    if not agenda.events:
        summary = "Nothing is scheduled for this day."
    elif progress.total and progress.completed == progress.total:
        summary = f"All {progress.total} medications are done for the day."
    else:
        summary = (
            f"{progress.completed} of {progress.total} medications taken, "
            f"{len(agenda.appointments)} appointment(s) scheduled."
        )
    return DailyBriefing(summary=summary, highlights=highlights[:5])


class ScheduleAssistant:
    """Produces a DailyBriefing for an agenda, with or without a model."""

    def __init__(self, config: AssistantConfig | None = None) -> None:
        self.config = config or AssistantConfig()
        self.logger = logger.bind(component="schedule_assistant")
        self.agent: Agent[None, DailyBriefing] = Agent(
            model=self.config.model_name,
            output_type=DailyBriefing,
            system_prompt=SYSTEM_PROMPT,
            model_settings={"temperature": self.config.temperature},
            defer_model_check=True,
        )

    def _build_user_prompt(self, agenda: DailyAgenda) -> str:
        day = parse_date(agenda.date)
        heading = day.strftime("%A %d %B %Y") if day else agenda.date

        pending = [_describe(m) for m in agenda.pending_medications]
        completed = [_describe(m) for m in agenda.completed_medications]
        appointments = [_describe(a) for a in agenda.appointments]

        return f"""Schedule for {heading}:

PENDING MEDICATIONS:
{chr(10).join(pending) if pending else "None"}

TAKEN MEDICATIONS:
{chr(10).join(completed) if completed else "None"}

APPOINTMENTS:
{chr(10).join(appointments) if appointments else "None"}

PROGRESS: {agenda.progress.completed}/{agenda.progress.total} medications taken"""

    async def brief(self, agenda: DailyAgenda) -> DailyBriefing:
        """Summarize the agenda, falling back to a rule-based briefing."""
        if not self.config.enabled:
            return fallback_briefing(agenda)

        start_time = datetime.now()
        try:
            result = await asyncio.wait_for(
                self.agent.run(self._build_user_prompt(agenda)),
                timeout=self.config.timeout_seconds,
            )
            briefing = result.output
        except TimeoutError:
            self.logger.error("briefing_timeout", timeout_seconds=self.config.timeout_seconds)
            return fallback_briefing(agenda)
        except Exception as e:
            self.logger.error("briefing_failed", error=str(e))
            return fallback_briefing(agenda)

        self.logger.info(
            "briefing_generated",
            date=agenda.date,
            highlights=len(briefing.highlights),
            duration_seconds=round((datetime.now() - start_time).total_seconds(), 3),
        )
        return briefing
