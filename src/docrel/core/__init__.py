"""Cross-cutting concerns: logging, tracing, metrics."""
