"""External collaborator clients."""

from .llm import AdvisoryBackend, LLMAdvisoryClient, build_advisory_client

__all__ = ["AdvisoryBackend", "LLMAdvisoryClient", "build_advisory_client"]
