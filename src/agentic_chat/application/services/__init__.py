"""Application services for agentic-chat."""
