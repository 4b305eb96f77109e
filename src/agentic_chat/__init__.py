"""agentic-chat: a streaming chat engine with an agentic tool loop."""
