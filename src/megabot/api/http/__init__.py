"""FastAPI HTTP API with SSE streaming."""
