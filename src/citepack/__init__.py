"""citepack - local semantic index with citation-grounded answers."""

__version__ = "0.3.0"
