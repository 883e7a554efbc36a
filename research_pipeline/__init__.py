"""Research pipeline: discovery, triage, hypothesis generation, validation,
project planning and red-team critique over a shared item store."""

__version__ = "0.1.0"
