"""GoalPilot command-line interface."""
