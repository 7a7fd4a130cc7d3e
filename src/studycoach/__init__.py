"""Study Coach - study orchestration engine.

Builds study schedules from a learner profile, runs grounded tutoring
turns with audio, and aggregates time-on-task for progress reporting.
"""

__version__ = "0.1.0"
