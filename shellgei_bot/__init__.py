"""Shellgei bot: wiring, configuration files and logging."""
