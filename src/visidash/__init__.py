"""Visidash: natural-language data visualization dashboard.

Users ask questions in plain language; the server forwards them to an
automation webhook or an AI provider and stores the charts that come back.
"""

__version__ = "0.1.0"
