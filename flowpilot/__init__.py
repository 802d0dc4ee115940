"""
Flowpilot - job orchestration for browser-driven video production.

Version 1.0.0: scheduler, message channel, automation agents, control API.
"""

__version__ = "1.0.0"
