"""botgrader: chunked, resumable quality analysis of hosted chat bots."""

__version__ = "0.1.0"
