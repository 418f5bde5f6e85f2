"""Unattended executor agent for escrowed swap-and-stake jobs."""

__version__ = "0.1.0"
