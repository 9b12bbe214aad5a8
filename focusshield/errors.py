from __future__ import annotations


class FocusShieldError(Exception):
    """Base class for every error raised by the schedule/session engine."""


class ScheduleValidationError(FocusShieldError, ValueError):
    pass


class IntervalTooShort(ScheduleValidationError):
    def __init__(self, duration_minutes: int, minimum_minutes: int = 15) -> None:
        super().__init__(
            f"schedule interval too short: {duration_minutes} minutes (minimum is {minimum_minutes})"
        )
        self.duration_minutes = duration_minutes
        self.minimum_minutes = minimum_minutes


class ScheduleNotFoundError(FocusShieldError, KeyError):
    def __init__(self, schedule_id: str) -> None:
        super().__init__(schedule_id)
        self.schedule_id = schedule_id

    def __str__(self) -> str:
        return f"schedule not found: {self.schedule_id}"


class ScheduleConflictError(FocusShieldError):
    pass


class EnforcementStartFailed(FocusShieldError):
    def __init__(self, schedule_id: str, reason: str) -> None:
        super().__init__(f"enforcement refused to start for {schedule_id}: {reason}")
        self.schedule_id = schedule_id
        self.reason = reason


class PersistenceFailure(FocusShieldError):
    pass


class DecodeFailure(FocusShieldError):
    pass
