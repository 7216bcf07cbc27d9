"""Command-line interface (``carecircle-events``)."""
