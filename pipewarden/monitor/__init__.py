"""Pipewarden status monitor — read-only view over projects and run state.

Modules
-------
projection
    ``StatusProjection`` reads the Project Store and the Liveness
    Poller's view and produces ``StatusSnapshot`` Pydantic models.
renderer
    ``StatusRenderer`` turns ``StatusSnapshot`` into Rich renderables,
    including a ``Rich.Live`` mode that redraws on transition events.
"""
