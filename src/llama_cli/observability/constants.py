"""Names of spans, attributes and metrics emitted by llama-cli."""

SERVICE_NAME = "llama-cli"

# Spans
SPAN_DISCOVERY = "llama_cli.discovery"
SPAN_API_REQUEST = "llama_cli.api_request"
SPAN_API_STREAM = "llama_cli.api_stream"
SPAN_USER_PROMPT = "llama_cli.user_prompt"

# Span events
EVENT_API_RESPONSE = "llama_cli.api_response"
EVENT_API_ERROR = "llama_cli.api_error"
EVENT_TOOL_CALL = "llama_cli.tool_call"

# Metrics
METRIC_API_REQUEST_COUNT = "llama_cli.api.request.count"
METRIC_API_REQUEST_LATENCY = "llama_cli.api.request.latency"
METRIC_TOKEN_USAGE = "llama_cli.token.usage"
