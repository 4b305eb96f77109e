"""Domain layer for agentic-chat.

Contains:
- models/: Conversation content, stream events, tool calls and display messages
- contracts.py: Protocols for the transport, tool scheduler and session store
- exceptions.py: Error hierarchy
"""
