"""Pipewarden CLI — Typer-based command-line interface.

Provides the ``pipewarden`` command with subcommands for managing
projects, running and cancelling pipelines, and reading their status,
logs and results.

All output uses Rich for formatted terminal display.
"""
