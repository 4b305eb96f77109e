"""Business metrics for agentic-chat.

Defines OpenTelemetry metrics for:
- Chat: Stream attempts, invalid-stream retries, rollbacks, mutator truncations
- LLM: Request count and latency
- Tools: Execution count, errors and latency
- Orchestrator: Agentic loop iterations and compressions
"""

from opentelemetry import metrics

meter = metrics.get_meter("agentic_chat")

# =============================================================================
# CHAT METRICS
# =============================================================================

chat_stream_attempts = meter.create_counter(
    name="agentic_chat.chat.stream_attempts",
    description="Total streaming attempts made by chat sessions (including retries)",
    unit="1",
)

chat_invalid_stream_retries = meter.create_counter(
    name="agentic_chat.chat.invalid_stream_retries",
    description="Attempts discarded because the streamed response was invalid",
    unit="1",
)

chat_history_rollbacks = meter.create_counter(
    name="agentic_chat.chat.history_rollbacks",
    description="Sends that ended without a valid model turn and were rolled back",
    unit="1",
)

chat_mutator_truncations = meter.create_counter(
    name="agentic_chat.chat.mutator_truncations",
    description="Streams truncated before a second state-mutating tool call",
    unit="1",
)

# =============================================================================
# LLM METRICS
# =============================================================================

llm_request_count = meter.create_counter(
    name="agentic_chat.llm.request_count",
    description="Total LLM requests made",
    unit="1",
)

llm_request_time = meter.create_histogram(
    name="agentic_chat.llm.request_time",
    description="Time for LLM requests (request to last chunk)",
    unit="ms",
)

# =============================================================================
# TOOL METRICS
# =============================================================================

tool_execution_count = meter.create_counter(
    name="agentic_chat.tools.execution_count",
    description="Total tool executions",
    unit="1",
)

tool_execution_errors = meter.create_counter(
    name="agentic_chat.tools.execution_errors",
    description="Total tool execution errors",
    unit="1",
)

tool_execution_time = meter.create_histogram(
    name="agentic_chat.tools.execution_time",
    description="Time to execute tools",
    unit="ms",
)

# =============================================================================
# ORCHESTRATOR METRICS
# =============================================================================

orchestrator_iterations = meter.create_counter(
    name="agentic_chat.orchestrator.iterations",
    description="Model turns driven by the agentic loop",
    unit="1",
)

compression_count = meter.create_counter(
    name="agentic_chat.compression.count",
    description="Chat history compressions (attribute: status)",
    unit="1",
)
