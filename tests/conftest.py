"""
Pytest configuration and shared fixtures.

Fake pages stand in for Playwright: a FakePage holds a dict of "present"
selectors, and tests add or remove elements to steer an agent through its
command flow.
"""

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Optional

import pytest

from flowpilot.agents.base import AutomationAgent
from flowpilot.channel import MessageType
from flowpilot.infra.credentials import Credential, StaticCredentialProvider


# =============================================================================
# Page fakes
# =============================================================================


class FakePage:
    """In-memory PageDriver; records every interaction in `actions`."""

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.elements: dict[str, dict[str, Any]] = {}
        self.actions: list[tuple] = []
        self.on_click: dict[str, Callable[[], None]] = {}
        self.closed = False

    def add(self, selector: str, text: Optional[str] = None, disabled: bool = False,
            checked: bool = False, **attrs: str) -> None:
        self.elements[selector] = {"text": text, "disabled": disabled, "checked": checked, "attrs": attrs}

    def remove(self, selector: str) -> None:
        self.elements.pop(selector, None)

    def did(self, kind: str) -> list[tuple]:
        return [action for action in self.actions if action[0] == kind]

    async def goto(self, url: str) -> None:
        self.actions.append(("goto", url))
        self.url = url

    async def exists(self, selector: str) -> bool:
        return selector in self.elements

    async def text(self, selector: str) -> Optional[str]:
        element = self.elements.get(selector)
        return element["text"] if element else None

    async def attributes(self, selector: str, name: str) -> list[str]:
        element = self.elements.get(selector)
        if element is None or name not in element["attrs"]:
            return []
        return [element["attrs"][name]]

    async def fill(self, selector: str, value: str) -> None:
        self.actions.append(("fill", selector, value))

    async def click(self, selector: str) -> None:
        self.actions.append(("click", selector))
        callback = self.on_click.get(selector)
        if callback is not None:
            callback()

    async def select_option(self, selector: str, value: str) -> bool:
        self.actions.append(("select", selector, value))
        return selector in self.elements

    async def is_disabled(self, selector: str) -> bool:
        element = self.elements.get(selector)
        return element is None or element["disabled"]

    async def is_checked(self, selector: str) -> bool:
        element = self.elements.get(selector)
        return bool(element and element["checked"])

    async def set_input_files(self, selector: str, path: str) -> None:
        self.actions.append(("upload", selector, path))

    async def close(self) -> None:
        self.closed = True


class FakePageProvider:
    """Opens FakePages; set `fail_with` to simulate a browser that cannot open pages."""

    def __init__(self):
        self.opened: list[FakePage] = []
        self.closed = False
        self.fail_with: Optional[Exception] = None

    async def open_page(self, url: str) -> FakePage:
        if self.fail_with is not None:
            raise self.fail_with
        page = FakePage(url)
        self.opened.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Scripted agents
# =============================================================================

Outcome = Callable[[AutomationAgent, dict], Awaitable[dict]]


def succeed(**result: Any) -> Outcome:
    async def outcome(agent: AutomationAgent, payload: dict) -> dict:
        return dict(result)
    return outcome


def fail(error: Exception) -> Outcome:
    async def outcome(agent: AutomationAgent, payload: dict) -> dict:
        raise error
    return outcome


def hang() -> Outcome:
    async def outcome(agent: AutomationAgent, payload: dict) -> dict:
        await asyncio.Event().wait()
        return {}
    return outcome


def wait_for_gate(gate: asyncio.Event, **result: Any) -> Outcome:
    async def outcome(agent: AutomationAgent, payload: dict) -> dict:
        await gate.wait()
        return dict(result)
    return outcome


def report_progress(*steps: int) -> Outcome:
    async def outcome(agent: AutomationAgent, payload: dict) -> dict:
        for step in steps:
            await agent.emit_progress(payload, step)
        return {"artifact_url": video_url(payload["job_id"])}
    return outcome


def video_url(job_id: str) -> str:
    return f"https://storage.googleapis.com/ai-sandbox-videofx/video/{job_id}.mp4"


class AgentScript:
    """
    Decides what scripted agents do, per target.

    Queued outcomes are used first; afterwards the target's default applies
    (success with a signed video URL or a delivery id).
    """

    def __init__(self):
        self.queued: dict[str, deque] = {}
        self.defaults: dict[str, Outcome] = {}
        self.started: list[dict] = []
        self.cancelled: list[str] = []

    def push(self, target: str, *outcomes: Outcome) -> None:
        self.queued.setdefault(target, deque()).extend(outcomes)

    def set_default(self, target: str, outcome: Outcome) -> None:
        self.defaults[target] = outcome

    def started_for(self, target: str) -> list[dict]:
        return [entry for entry in self.started if entry["target"] == target]

    async def run(self, agent: AutomationAgent, payload: dict) -> dict:
        self.started.append({"target": agent.target, **payload})
        queue = self.queued.get(agent.target)
        outcome = queue.popleft() if queue else self.defaults.get(agent.target)
        if outcome is None:
            if agent.start_type == MessageType.START_PRODUCTION:
                outcome = succeed(artifact_url=video_url(payload["job_id"]))
            else:
                outcome = succeed(delivery_id=f"{agent.target}-{payload['job_id'][:8]}")
        try:
            return await outcome(agent, payload)
        except asyncio.CancelledError:
            self.cancelled.append(payload["job_id"])
            raise


class ScriptedProductionAgent(AutomationAgent):
    target = "flow"

    def __init__(self, page, script: AgentScript, **kwargs: Any):
        super().__init__(page, **kwargs)
        self.script = script

    async def perform(self, payload: dict) -> dict:
        return await self.script.run(self, payload)


class ScriptedDistributionAgent(ScriptedProductionAgent):
    start_type = MessageType.DISTRIBUTE
    success_type = MessageType.DISTRIBUTION_SUCCEEDED
    failure_type = MessageType.DISTRIBUTION_FAILED

    def __init__(self, page, script: AgentScript, target: str, **kwargs: Any):
        super().__init__(page, script, **kwargs)
        self.target = target


def scripted_factories(script: AgentScript) -> dict:
    def distribution(target: str):
        return lambda page, **kwargs: ScriptedDistributionAgent(page, script, target, **kwargs)

    return {
        "flow": lambda page, **kwargs: ScriptedProductionAgent(page, script, **kwargs),
        "tiktok": distribution("tiktok"),
        "shopee": distribution("shopee"),
        "lazada": distribution("lazada"),
    }


# =============================================================================
# Recording sinks
# =============================================================================


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    async def notify(self, event: str, job, details: Optional[dict] = None) -> None:
        self.events.append((event, job.job_id, details or {}))

    def names(self, job_id: Optional[str] = None) -> list[str]:
        return [event for event, jid, _ in self.events if job_id is None or jid == job_id]


class RecordingArtifactSink:
    def __init__(self):
        self.exported: list[str] = []

    async def export(self, job):
        self.exported.append(job.job_id)
        return None


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage("https://flow.google.com/create")


@pytest.fixture
def page_provider() -> FakePageProvider:
    return FakePageProvider()


@pytest.fixture
def agent_script() -> AgentScript:
    return AgentScript()


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    """Valid credentials for every target."""
    return StaticCredentialProvider({
        target: Credential(token=f"token-{target}")
        for target in ("flow", "tiktok", "shopee", "lazada")
    })


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def artifact_sink() -> RecordingArtifactSink:
    return RecordingArtifactSink()


@pytest.fixture
def wait_until():
    """Poll a predicate on the event loop until it holds or the timeout expires."""

    async def _wait(predicate: Callable[[], Any], timeout: float = 3.0, interval: float = 0.01):
        deadline = time.monotonic() + timeout
        while True:
            value = predicate()
            if value:
                return value
            if time.monotonic() >= deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait
