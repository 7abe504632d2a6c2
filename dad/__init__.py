"""
Dad — an always-on Slack front end for a command-line coding agent.

Every Slack thread gets its own resumable agent session. The package keeps
those sessions straight, decides who gets to run when, and remembers a little
about the people it talks to.

Architecture layers (bottom to top):
    1. Storage (SQLite: conversations, messages, relationships)
    2. Harness (result parsing, respect markers, the sessioned invoker,
       the concurrency gate)
    3. Orchestrator (one turn, end to end)
    4. Channels (Slack transport, formatting)
    5. Service (health endpoint, bootstrap, CLI)
"""

__version__ = "0.1.0"
