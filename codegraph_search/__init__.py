"""CodeGraph Search: hybrid retrieval and code-relationship engine."""

__version__ = "0.1.0"
