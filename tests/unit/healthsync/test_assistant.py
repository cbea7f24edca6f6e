"""
Tests for the daily briefing assistant.

These tests avoid real API calls by patching the underlying Agent.run to return
pre-constructed results with an `.output` attribute.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from support import make_event

from healthsync.config import AssistantConfig
from healthsync.domain.models import DailyBriefing, EventType, Recurrence
from healthsync.services.assistant import ScheduleAssistant, fallback_briefing
from healthsync.services.calendar_view import build_agenda


class _FakeAgentResult:
    """Minimal stand-in for pydantic-ai AgentRunResult with .output"""

    def __init__(self, output: Any) -> None:
        self.output = output


@pytest.fixture
def agenda():
    events = [
        make_event("aspirin", title="Aspirin", time="09:00 AM"),
        make_event("vitd", title="Vitamin D", dates_taken=frozenset({"20250115"})),
        make_event(
            "gp",
            title="GP check-up",
            type=EventType.APPOINTMENT,
            recurrence=Recurrence.ONE_TIME,
            start_date="20250115",
            time="02:30 PM",
        ),
    ]
    return build_agenda(events, "20250115")


@pytest.fixture
def enabled_config() -> AssistantConfig:
    return AssistantConfig(enabled=True, api_key="sk-test", timeout_seconds=0.05)


def test_fallback_briefing_summarises_progress(agenda) -> None:
    briefing = fallback_briefing(agenda)

    assert briefing.summary == "1 of 2 medications taken, 1 appointment(s) scheduled."
    assert briefing.highlights == [
        "Take 09:00 AM Aspirin (100 mg)",
        "Appointment: 02:30 PM GP check-up (100 mg)",
    ]


def test_fallback_briefing_for_empty_day() -> None:
    briefing = fallback_briefing(build_agenda([], "20250115"))
    assert briefing.summary == "Nothing is scheduled for this day."
    assert briefing.highlights == []


def test_fallback_briefing_when_all_done() -> None:
    events = [make_event(dates_taken=frozenset({"20250115"}))]
    briefing = fallback_briefing(build_agenda(events, "20250115"))
    assert briefing.summary == "All 1 medications are done for the day."


@pytest.mark.asyncio
async def test_disabled_assistant_never_calls_model(agenda) -> None:
    assistant = ScheduleAssistant(AssistantConfig(enabled=False))

    async def fake_run(*args, **kwargs):
        raise AssertionError("model should not be called")

    assistant.agent.run = fake_run  # type: ignore[assignment]

    briefing = await assistant.brief(agenda)

    assert briefing == fallback_briefing(agenda)


@pytest.mark.asyncio
async def test_enabled_assistant_returns_model_output(agenda, enabled_config) -> None:
    assistant = ScheduleAssistant(enabled_config)
    expected = DailyBriefing(summary="Aspirin is still due at 9.", highlights=["Aspirin 09:00 AM"])

    async def fake_run(prompt: str, *args, **kwargs):
        assert "PENDING MEDICATIONS:\n09:00 AM Aspirin (100 mg)" in prompt
        assert "Wednesday 15 January 2025" in prompt
        assert "PROGRESS: 1/2 medications taken" in prompt
        return _FakeAgentResult(expected)

    assistant.agent.run = fake_run  # type: ignore[assignment]

    assert await assistant.brief(agenda) == expected


@pytest.mark.asyncio
async def test_model_failure_falls_back(agenda, enabled_config) -> None:
    assistant = ScheduleAssistant(enabled_config)

    async def fake_run(*args, **kwargs):
        raise RuntimeError("provider unavailable")

    assistant.agent.run = fake_run  # type: ignore[assignment]

    assert await assistant.brief(agenda) == fallback_briefing(agenda)


@pytest.mark.asyncio
async def test_model_timeout_falls_back(agenda, enabled_config) -> None:
    assistant = ScheduleAssistant(enabled_config)

    async def fake_run(*args, **kwargs):
        await asyncio.sleep(1)

    assistant.agent.run = fake_run  # type: ignore[assignment]

    assert await assistant.brief(agenda) == fallback_briefing(agenda)
