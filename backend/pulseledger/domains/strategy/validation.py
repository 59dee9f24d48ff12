"""
Validation of machine-generated parameter recommendations.

Recommendations come from a text-generation model and are handled like
hostile input: names must be on the allow-list, values must coerce cleanly
into the parameter's domain, and anything else is dropped with a logged
reason. Nothing here touches live state.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pulseledger.domains.strategy.schemas import ParameterChange, StrategyParameters

logger = logging.getLogger(__name__)

_INT_TEXT = re.compile(r"^[+-]?\d+(?:\.0+)?$")
_FLOAT_TEXT = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)$")


@dataclass(frozen=True)
class ParameterSpec:
    field: str
    kind: str  # enum / int / float
    choices: Tuple[str, ...] = ()
    minimum: Optional[float] = None
    maximum: Optional[float] = None


PARAMETER_SPECS: Dict[str, ParameterSpec] = {
    "postingTone": ParameterSpec("posting_tone", "enum", choices=("enthusiastic", "analytical", "balanced")),
    "insightFocus": ParameterSpec("insight_focus", "enum", choices=("trends", "predictions", "community", "technical")),
    "minQualityScore": ParameterSpec("min_quality_score", "int", minimum=4, maximum=8),
    "maxDailyActions": ParameterSpec("max_daily_actions", "int", minimum=2, maximum=8),
    "optimalHour": ParameterSpec("optimal_hour", "int", minimum=0, maximum=23),
    "minVoteScore": ParameterSpec("min_vote_score", "float", minimum=4.0, maximum=9.0),
}

# snake_case spellings are accepted for the same six parameters, nothing else
_ALIASES: Dict[str, str] = {spec.field: name for name, spec in PARAMETER_SPECS.items()}


class InvalidValue(ValueError):
    pass


def resolve_name(raw_name: Any) -> Optional[str]:
    if not isinstance(raw_name, str):
        return None
    name = raw_name.strip()
    if name in PARAMETER_SPECS:
        return name
    return _ALIASES.get(name)


def coerce_value(spec: ParameterSpec, value: Any) -> Any:
    """Return the value in its canonical type, or raise InvalidValue"""
    if spec.kind == "enum":
        if not isinstance(value, str):
            raise InvalidValue(f"expected one of {spec.choices}, got {type(value).__name__}")
        normalized = value.strip().lower()
        if normalized not in spec.choices:
            raise InvalidValue(f"{value!r} not in {spec.choices}")
        return normalized

    # bool is an int subclass; never a valid threshold
    if isinstance(value, bool) or value is None:
        raise InvalidValue(f"non-numeric value {value!r}")

    if spec.kind == "int":
        if isinstance(value, int):
            number = value
        elif isinstance(value, float):
            if not math.isfinite(value) or not value.is_integer():
                raise InvalidValue(f"{value!r} is not an integer")
            number = int(value)
        elif isinstance(value, str) and _INT_TEXT.match(value.strip()):
            number = int(float(value.strip()))
        else:
            raise InvalidValue(f"{value!r} is not an integer")
    else:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str) and _FLOAT_TEXT.match(value.strip()):
            number = float(value.strip())
        else:
            raise InvalidValue(f"{value!r} is not a number")
        if not math.isfinite(number):
            raise InvalidValue(f"{value!r} is not finite")
        number = round(number, 2)

    if number < spec.minimum or number > spec.maximum:
        raise InvalidValue(f"{number} outside [{spec.minimum}, {spec.maximum}]")
    return number


def validate_recommendations(
    current: StrategyParameters,
    recommendations: Iterable[Any],
) -> Tuple[List[ParameterChange], List[Dict[str, Any]]]:
    """
    Split raw recommendation tuples into (accepted changes, rejections).

    A tuple is accepted only if it names an allow-listed parameter and its
    suggested value lies in that parameter's domain. Suggestions equal to the
    current value are dropped as no-ops. If a parameter is named more than
    once, the first valid suggestion wins.
    """
    accepted: List[ParameterChange] = []
    rejected: List[Dict[str, Any]] = []
    seen = set()

    for raw in recommendations or []:
        if not isinstance(raw, dict):
            rejected.append({"raw": repr(raw)[:200], "reason": "not an object"})
            continue

        name = resolve_name(raw.get("parameter"))
        if name is None:
            rejected.append({"raw": repr(raw)[:200], "reason": "parameter not allowed"})
            continue

        spec = PARAMETER_SPECS[name]
        suggested = raw.get("suggestedValue", raw.get("suggested_value"))
        try:
            value = coerce_value(spec, suggested)
        except InvalidValue as e:
            rejected.append({"parameter": name, "raw": repr(suggested)[:200], "reason": str(e)})
            continue

        if name in seen:
            rejected.append({"parameter": name, "raw": repr(suggested)[:200], "reason": "duplicate parameter"})
            continue

        old_value = getattr(current, spec.field)
        if value == old_value:
            rejected.append({"parameter": name, "raw": repr(suggested)[:200], "reason": "no change"})
            continue

        seen.add(name)
        reason = raw.get("reason")
        accepted.append(ParameterChange(
            name=name,
            field=spec.field,
            old_value=old_value,
            new_value=value,
            reason=str(reason)[:500] if reason is not None else "",
        ))

    for item in rejected:
        logger.info(f"Dropped strategy recommendation: {item}")

    return accepted, rejected
