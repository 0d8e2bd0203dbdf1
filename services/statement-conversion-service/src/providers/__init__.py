"""Model-backed provider implementations for extraction and advice."""

from .openai_advisor import OpenAIAdvisorProvider
from .openai_extraction import OpenAIExtractionProvider

__all__ = ["OpenAIAdvisorProvider", "OpenAIExtractionProvider"]
