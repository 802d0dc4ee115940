"""
Page pool for automation agents.

PageManager owns every agent context. acquire(target) hands out an idle,
unleased agent for the target, or opens a new page and registers a fresh
agent on the channel as "agent:<target>:<n>". The scheduler leases an agent
for one command and releases it once that command has settled.
"""

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..channel import MessageChannel
from ..config import TARGET_URLS
from ..errors import DispatchError, FlowpilotError
from .base import AutomationAgent
from .distribution import TikTokDistributionAgent, lazada_agent, shopee_agent
from .page import PageDriver, PageProvider
from .production import FlowProductionAgent

logger = logging.getLogger(__name__)

AgentFactory = Callable[..., AutomationAgent]


def default_agent_factories() -> Dict[str, AgentFactory]:
    return {
        "flow": FlowProductionAgent,
        "tiktok": TikTokDistributionAgent,
        "shopee": shopee_agent,
        "lazada": lazada_agent,
    }


class PageManager:
    """Leases agent contexts per target, opening pages on demand."""

    def __init__(
        self,
        channel: MessageChannel,
        page_provider: PageProvider,
        agent_factories: Optional[Mapping[str, AgentFactory]] = None,
        target_urls: Optional[Mapping[str, str]] = None,
        orchestrator_context: str = "orchestrator",
        min_action_delay: float = 0.7,
        agent_options: Optional[Mapping[str, Dict[str, Any]]] = None,
    ):
        self.channel = channel
        self.page_provider = page_provider
        self.agent_factories = dict(agent_factories or default_agent_factories())
        self.target_urls = dict(target_urls or TARGET_URLS)
        self.orchestrator_context = orchestrator_context
        self.min_action_delay = min_action_delay
        self.agent_options = {k: dict(v) for k, v in (agent_options or {}).items()}

        self._agents: Dict[str, AutomationAgent] = {}
        self._pages: Dict[str, PageDriver] = {}
        self._leased: set[str] = set()
        self._counters: Dict[str, int] = {}

    def supports(self, target: str) -> bool:
        return target in self.agent_factories and target in self.target_urls

    async def acquire(self, target: str) -> str:
        """
        Lease an agent context for `target`.

        Raises:
            DispatchError: If the target is unknown or no page could be opened
        """
        if not self.supports(target):
            raise DispatchError(f"No agent available for target '{target}'")

        for context, agent in self._agents.items():
            if (
                agent.target == target
                and context not in self._leased
                and not agent.busy
                and self.channel.is_available(context)
            ):
                self._leased.add(context)
                logger.debug(f"[Pages] Reusing {context}")
                return context

        url = self.target_urls[target]
        try:
            page = await self.page_provider.open_page(url)
        except FlowpilotError:
            raise
        except Exception as e:
            raise DispatchError(f"Could not open page for {target}: {e}") from e

        self._counters[target] = self._counters.get(target, 0) + 1
        context = f"agent:{target}:{self._counters[target]}"

        options = {"min_action_delay": self.min_action_delay, **self.agent_options.get(target, {})}
        agent = self.agent_factories[target](page, **options)
        agent.attach(self.channel, context, orchestrator_context=self.orchestrator_context)

        self._agents[context] = agent
        self._pages[context] = page
        self._leased.add(context)
        logger.info(f"[Pages] Opened {context} at {url}")
        return context

    def release(self, context: Optional[str]) -> None:
        """Return a leased context to the pool."""
        if context is not None:
            self._leased.discard(context)

    def agent(self, context: str) -> Optional[AutomationAgent]:
        return self._agents.get(context)

    def status(self) -> list[dict[str, Any]]:
        return [
            {**agent.status(), "leased": context in self._leased}
            for context, agent in self._agents.items()
        ]

    async def close_all(self) -> None:
        """Cancel running commands, unregister agents and close their pages."""
        for context in list(self._agents):
            agent = self._agents.pop(context)
            if agent.busy:
                await agent.cancel()
            await self.channel.unregister(context)
            page = self._pages.pop(context, None)
            if page is not None:
                try:
                    await page.close()
                except Exception as e:
                    logger.warning(f"[Pages] Failed to close page for {context}: {e}")
        self._leased.clear()
