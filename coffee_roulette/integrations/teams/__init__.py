"""Microsoft Teams incoming-webhook integration."""

from .cards import TeamsCards

__all__ = ["TeamsCards"]
