"""
Eva Chat application package.

This package contains the conversation core (session store, trash log,
conversation controller), history persistence, the completion API client and
the Qt UI of the mental health support assistant.
"""

from .config import AppConfig
