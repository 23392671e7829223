"""
Client for the Anthropic Messages API with streaming, cancellation, a
cross-process bridge and a language model provider adapter.
"""

__version__ = "1.0.0"
