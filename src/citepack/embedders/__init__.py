"""Embedding providers for vector generation."""

from citepack.embedders.ollama_embedder import ModelAvailability, OllamaEmbedder, find_installed

__all__ = ["ModelAvailability", "OllamaEmbedder", "find_installed"]
