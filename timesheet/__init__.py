"""Timesheet tracker: users, companies, work entries and an admin dashboard."""

__version__ = "0.1.0"
