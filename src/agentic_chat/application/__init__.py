"""Application layer for agentic-chat.

Contains:
- chat/: ChatSession, curated history and compression
- orchestrator/: The agentic tool loop and its event stream
- services/: Logging and retry helpers
- settings.py: Application configuration
"""
