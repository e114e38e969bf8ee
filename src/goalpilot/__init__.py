"""GoalPilot: drive a live browser from natural-language goals."""

__version__ = "0.3.0"
