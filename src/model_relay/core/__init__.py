"""Conversation driver for Model Relay."""

from model_relay.core.conversation import Conversation

__all__ = ["Conversation"]
