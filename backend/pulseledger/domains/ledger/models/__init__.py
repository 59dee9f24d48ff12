from .action_record import ActionRecord, ActionType, ActionOutcome

__all__ = [
    "ActionRecord",
    "ActionType",
    "ActionOutcome",
]
