from .tracing import add_span_attributes, configure_tracing, get_tracer, trace_span

__all__ = ["add_span_attributes", "configure_tracing", "get_tracer", "trace_span"]
