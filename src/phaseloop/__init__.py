"""
phaseloop - single-threaded, phase-ordered cooperative callback scheduler.

- phaseloop.core: errors, logging, settings, enums
- phaseloop.loop: PhaseScheduler, timers, queues, pollers, tracing
- phaseloop.cli: ``phaseloop`` command line
"""

__version__ = "0.1.0"

from phaseloop.core import *  # noqa
from phaseloop.loop import *  # noqa
