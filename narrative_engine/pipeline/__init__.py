"""Turn pipeline: prompt -> completion -> validation -> state commit."""

from .orchestrator import Orchestrator, advance_clock  # noqa: F401
