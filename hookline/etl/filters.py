"""
Filter evaluation for captured webhook requests.

A FilterSpec is a conjunction of optional predicates. Each predicate below
returns True when its part of the FilterSpec is absent, so a record matches only
when every predicate holds.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, List, Optional, Tuple

from hookline.models import CapturedRequest, FilterSpec, HeaderCondition, HeaderOperator

Predicate = Callable[[CapturedRequest, FilterSpec], bool]


def _in_date_range(record: CapturedRequest, spec: FilterSpec) -> bool:
    if spec.date_range is None:
        return True
    start, end = spec.date_range.start, spec.date_range.end
    if start is not None and record.timestamp < start:
        return False
    if end is not None and record.timestamp > end:
        return False
    return True


def _method_allowed(record: CapturedRequest, spec: FilterSpec) -> bool:
    if not spec.methods:
        return True
    return bool(record.method) and record.method in spec.methods


def _content_type_allowed(record: CapturedRequest, spec: FilterSpec) -> bool:
    if not spec.content_types:
        return True
    if not record.content_type:
        return False
    return any(ct in record.content_type for ct in spec.content_types)


def _ip_allowed(record: CapturedRequest, spec: FilterSpec) -> bool:
    if not spec.ip_addresses:
        return True
    return bool(record.ip) and record.ip in spec.ip_addresses


def _user_agent_allowed(record: CapturedRequest, spec: FilterSpec) -> bool:
    if not spec.user_agents:
        return True
    if not record.user_agent:
        return False
    return any(ua in record.user_agent for ua in spec.user_agents)


def _body_contains(record: CapturedRequest, spec: FilterSpec) -> bool:
    if not spec.body_contains:
        return True
    return spec.body_contains in record.body


def header_condition_matches(header_value: Optional[str], condition: HeaderCondition) -> bool:
    """
    Evaluate one header condition against the stored header value.

    >>> header_condition_matches("application/json", HeaderCondition(key="a", operator="contains", value="json"))
    True
    >>> header_condition_matches(None, HeaderCondition(key="a", operator="equals", value="x"))
    False
    >>> header_condition_matches("abc", HeaderCondition(key="a", operator="regex", value="("))
    False
    """
    if not header_value:
        return False
    if condition.operator == HeaderOperator.equals:
        return header_value == condition.value
    if condition.operator == HeaderOperator.contains:
        return condition.value in header_value
    if condition.operator == HeaderOperator.regex:
        try:
            return re.search(condition.value, header_value) is not None
        except re.error:
            return False
    return False


def _headers_match(record: CapturedRequest, spec: FilterSpec) -> bool:
    for condition in spec.header_conditions:
        # a missing header fails the whole spec without checking later conditions
        if not header_condition_matches(record.headers.get(condition.key), condition):
            return False
    return True


PREDICATES: Tuple[Predicate, ...] = (
    _in_date_range,
    _method_allowed,
    _content_type_allowed,
    _ip_allowed,
    _user_agent_allowed,
    _body_contains,
    _headers_match,
)


def matches(record: CapturedRequest, spec: Optional[FilterSpec]) -> bool:
    if spec is None:
        return True
    return all(predicate(record, spec) for predicate in PREDICATES)


def filter_requests(records: Iterable[CapturedRequest], spec: Optional[FilterSpec]) -> List[CapturedRequest]:
    if spec is None:
        return list(records)
    return [record for record in records if matches(record, spec)]
