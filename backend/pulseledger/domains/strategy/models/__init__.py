from .adaptation_record import AdaptationRecord

__all__ = [
    "AdaptationRecord",
]
