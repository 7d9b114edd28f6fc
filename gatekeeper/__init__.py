"""Meeting gatekeeper: decides whether a meeting is warranted and books it."""

__version__ = "1.0.0"
