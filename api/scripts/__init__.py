"""Operational scripts: ``python -m api.scripts.<name>``."""
