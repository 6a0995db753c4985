"""Infrastructure layer — resilience and observability for the analysis pipeline.

Modules:
    retry       Exponential backoff retry decorator.
    metrics     Prometheus metrics registry.
"""
