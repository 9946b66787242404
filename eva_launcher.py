"""
Frozen-build entry point for Eva Chat.

Bundlers need a top-level script, so this file only hands off to
``eva_chat.main.main``, which reads the app configuration and opens the
chat window.
"""

from __future__ import annotations

from eva_chat.main import main


if __name__ == "__main__":
    main()
