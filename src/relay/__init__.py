"""Chat and webhook relay for remote Jules coding sessions.

This package lets a user start a Jules session against one of their GitHub
repositories and get notified when it produces a pull request:
- Slack slash commands, app mentions and direct messages
- A one-shot JSON webhook for external automations (e.g. Notion)
- Source (repository) resolution from a per-user preference
- A bounded polling state machine that notifies exactly once
- Per-user credential storage (in-memory or PostgreSQL)
"""
