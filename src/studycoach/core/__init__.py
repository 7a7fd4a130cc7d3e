"""Study orchestration core.

Modules:
- models: profiles, plans, sessions, chat turns, progress records
- errors: error taxonomy (ErrorKind)
- schedule_builder: study plan generation
- session_locator: active session lookup
- tutor: tutoring turn orchestration
- progress: progress recording and aggregation
- diagnostics: side channel for background write failures
"""

__all__ = [
    "models",
    "errors",
    "schedule_builder",
    "session_locator",
    "tutor",
    "progress",
    "diagnostics",
]
