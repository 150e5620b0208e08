"""
Agent daemon: a tool registry shared by built-in and MCP providers, an
approval-gated orchestrator for bounded agent runs, and the bridge that
applies client approval decisions to a chat transcript.
"""

__version__ = "0.1.0"
