"""Pipewarden: supervised, per-user pipeline projects.

Each user owns any number of independently configured projects.  A
project's pipeline runs as a detached OS process that survives client
disconnects and server restarts; a polling monitor turns raw process
observations into running/stopped transitions, and logs and results are
re-read only when such a transition happens.
"""

__version__ = "0.1.0"
__description__ = "Supervised, per-user pipeline projects with transition-gated reads"

from pipewarden.core.warden import Warden, WardenSession
from pipewarden.monitor.projection import StatusProjection
from pipewarden.cli.app import app as cli

__all__ = ["Warden", "WardenSession", "StatusProjection", "cli", "__version__"]
