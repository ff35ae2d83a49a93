"""Rule condition evaluation.

A condition is ``{field, operator, value}`` checked against the event record.
The evaluator never raises: a missing field or a comparison between
incompatible types makes that condition false.
"""
import operator
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from commission_engine.models.commission import ConditionOperator
from commission_engine.schemas.commission import CommissionConditionSchema


_MISSING = object()

_COMPARISONS = {
    ConditionOperator.EQ: operator.eq,
    ConditionOperator.NE: operator.ne,
    ConditionOperator.GT: operator.gt,
    ConditionOperator.GTE: operator.ge,
    ConditionOperator.LT: operator.lt,
    ConditionOperator.LTE: operator.le,
}


def build_record(
    basis_value: Decimal,
    entity_type: Optional[str],
    entity_id: Optional[str],
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Event record conditions are evaluated against."""
    record = dict(metadata or {})
    record["basis_value"] = basis_value
    record["entity_type"] = entity_type
    record["entity_id"] = entity_id
    return record


def resolve_field(record: Dict[str, Any], path: str) -> Any:
    """Look up a dotted path ("customer.segment") in nested dicts."""
    if path in record:
        return record[path]

    current: Any = record
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _coerce(value: Any) -> Any:
    # Numbers compare as Decimal so "5000" in JSON meets 5000.00 from the request
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            return value
    return value


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def condition_holds(condition: CommissionConditionSchema, record: Dict[str, Any]) -> bool:
    actual = resolve_field(record, condition.field)
    if actual is _MISSING:
        return False

    op = ConditionOperator(condition.operator)
    try:
        if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            candidates = [_coerce(v) for v in _as_list(condition.value)]
            found = _coerce(actual) in candidates
            return found if op == ConditionOperator.IN else not found

        return bool(_COMPARISONS[op](_coerce(actual), _coerce(condition.value)))
    except (TypeError, ValueError, InvalidOperation):
        return False


def failed_conditions(
    conditions: Iterable[CommissionConditionSchema],
    record: Dict[str, Any],
) -> List[Dict[str, Any]]:
    """Conditions that do not hold, as plain dicts."""
    failed = []
    for condition in conditions:
        if not condition_holds(condition, record):
            failed.append(condition.model_dump(mode="json"))
    return failed


def evaluate(conditions: Iterable[CommissionConditionSchema], record: Dict[str, Any]) -> bool:
    """True when every condition holds (vacuously true for none)."""
    return not failed_conditions(conditions, record)
