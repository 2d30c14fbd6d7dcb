"""Coachforce - streaming ReAct orchestration core for an AI coaching backend."""

__version__ = "0.1.0"
