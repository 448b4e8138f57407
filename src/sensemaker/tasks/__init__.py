"""Task lifecycle: request-time orchestration and queue-driven processing."""
