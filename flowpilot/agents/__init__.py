"""Automation agents that drive external pages."""

from .base import AgentState, AutomationAgent
from .distribution import (
    DistributionAgent,
    SellerCenterDistributionAgent,
    TikTokDistributionAgent,
    format_caption,
    lazada_agent,
    shopee_agent,
)
from .page import PageDriver, PageProvider, PlaywrightPageDriver, PlaywrightPageProvider
from .pages import PageManager, default_agent_factories
from .polling import poll_until_outcome, wait_for
from .production import FlowProductionAgent, is_signed_video_url, parse_progress

__all__ = [
    "AgentState",
    "AutomationAgent",
    "DistributionAgent",
    "FlowProductionAgent",
    "PageDriver",
    "PageManager",
    "PageProvider",
    "PlaywrightPageDriver",
    "PlaywrightPageProvider",
    "SellerCenterDistributionAgent",
    "TikTokDistributionAgent",
    "default_agent_factories",
    "format_caption",
    "is_signed_video_url",
    "lazada_agent",
    "parse_progress",
    "poll_until_outcome",
    "shopee_agent",
    "wait_for",
]
