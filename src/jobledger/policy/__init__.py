"""Marketplace policy parameters."""

from jobledger.policy.resolver import CalendarPolicy, PolicyResolver

__all__ = ["CalendarPolicy", "PolicyResolver"]
