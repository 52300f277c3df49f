"""taskpulse: personal task manager with staged chat reminders."""

__version__ = "0.1.0"
