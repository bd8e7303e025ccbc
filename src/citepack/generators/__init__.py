"""Chat generation backends."""

from citepack.generators.ollama_chat import OllamaChat

__all__ = ["OllamaChat"]
