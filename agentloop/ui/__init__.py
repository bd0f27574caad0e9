"""
agentloop UI components
"""

from .terminal import TerminalUI, auto_decision

__all__ = ["TerminalUI", "auto_decision"]
