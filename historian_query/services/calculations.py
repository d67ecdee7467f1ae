"""
Client-side time-series math for backends that only store recorded values.

All functions take recorded values and return new ``HistorianValue`` items;
none of them touch a connection. Timestamps are compared as UTC-aware
datetimes.
"""

from __future__ import annotations

import math
import re
import statistics
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

from historian_query.services.tags import parse_tag_path
from historian_query.services.values import NO_DATA, HistorianValue, as_utc, is_numeric_value

SECONDS_PER_DAY = 86400.0
# largest number of timestamps, buckets or instants a single query may produce
MAX_RESULT_COUNT = 150000

ValuePredicate = Callable[[Any], bool]


def interval_count(start: datetime, end: datetime, interval_seconds: float) -> int:
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be positive")
    start_utc = as_utc(start)
    end_utc = as_utc(end)
    if start_utc > end_utc:
        raise ValueError("start must not be after end")
    total = (end_utc - start_utc) // timedelta(microseconds=1)
    count = total // _microseconds(interval_seconds) + 1
    _check_result_count(count, "interpolated values")
    return count


def bucket_count(start: datetime, end: datetime, duration_seconds: float) -> int:
    if duration_seconds <= 0:
        raise ValueError("duration_seconds must be positive")
    total = max(0, (as_utc(end) - as_utc(start)) // timedelta(microseconds=1))
    count = -(-total // _microseconds(duration_seconds))
    _check_result_count(count, "summary buckets")
    return count


def interval_times(start: datetime, end: datetime, interval_seconds: float) -> list[datetime]:
    count = interval_count(start, end, interval_seconds)
    start_utc = as_utc(start)
    step = _microseconds(interval_seconds)
    return [start_utc + timedelta(microseconds=step * index) for index in range(count)]


def bucket_bounds(start: datetime, end: datetime, duration_seconds: float) -> list[tuple[datetime, datetime]]:
    bucket_count(start, end, duration_seconds)
    start_utc = as_utc(start)
    end_utc = as_utc(end)
    step = timedelta(microseconds=_microseconds(duration_seconds))
    bounds: list[tuple[datetime, datetime]] = []
    bucket_start = start_utc
    while bucket_start < end_utc:
        bucket_end = min(bucket_start + step, end_utc)
        bounds.append((bucket_start, bucket_end))
        bucket_start = bucket_end
    return bounds


def interpolate_many(
    values: Sequence[HistorianValue],
    times: Sequence[datetime],
    *,
    step: bool,
    integer: bool = False,
) -> list[HistorianValue]:
    ordered = sorted(values, key=lambda item: as_utc(item.timestamp))
    stamps = [as_utc(item.timestamp) for item in ordered]
    return [_interpolate(ordered, stamps, as_utc(when), step=step, integer=integer) for when in times]


def _interpolate(
    ordered: Sequence[HistorianValue],
    stamps: Sequence[datetime],
    when: datetime,
    *,
    step: bool,
    integer: bool,
) -> HistorianValue:
    right = bisect_right(stamps, when)
    if right > 0 and stamps[right - 1] == when:
        exact = ordered[right - 1]
        return HistorianValue(timestamp=when, value=exact.value, good=exact.good)
    if right == 0:
        return HistorianValue(timestamp=when, value=NO_DATA, good=False)

    before = ordered[right - 1]
    if right == len(ordered):
        return HistorianValue(timestamp=when, value=before.value, good=before.good)

    after = ordered[right]
    if (
        step
        or not before.good
        or not after.good
        or not is_numeric_value(before.value)
        or not is_numeric_value(after.value)
    ):
        return HistorianValue(timestamp=when, value=before.value, good=before.good)

    span = (stamps[right] - stamps[right - 1]).total_seconds()
    fraction = (when - stamps[right - 1]).total_seconds() / span
    low = float(before.value)
    value: float | int = low + (float(after.value) - low) * fraction
    if integer:
        value = _round_half_away(value)
    return HistorianValue(timestamp=when, value=value, good=True)


# ---------------------------------------------------------------------------
# filter expressions
# ---------------------------------------------------------------------------

_TOKEN_PATTERN = re.compile(
    r"\s*(?:"
    r"(?P<quoted>'[^']*')"
    r"|(?P<number>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)"
    r"|(?P<dot>\.)"
    r"|(?P<op><=|>=|<>|!=|==|=|<|>)"
    r"|(?P<word>[A-Za-z]+)"
    r"|(?P<paren>[()])"
    r")"
)

_COMPARATORS: dict[str, Callable[[float, float], bool]] = {
    "<": lambda left, right: left < right,
    "<=": lambda left, right: left <= right,
    ">": lambda left, right: left > right,
    ">=": lambda left, right: left >= right,
    "=": lambda left, right: left == right,
    "==": lambda left, right: left == right,
    "<>": lambda left, right: left != right,
    "!=": lambda left, right: left != right,
}


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str


def compile_filter_expression(expression: str, *, tag_name: str | None = None) -> ValuePredicate:
    tokens = _tokenize(expression)
    if not tokens:
        raise ValueError("filter expression is empty")
    return _FilterParser(tokens, tag_name=tag_name).parse()


def apply_filter(
    values: Sequence[HistorianValue],
    expression: str | None,
    *,
    tag_name: str | None = None,
) -> list[HistorianValue]:
    if expression is None or expression.strip() == "":
        return list(values)
    predicate = compile_filter_expression(expression, tag_name=tag_name)
    return [item for item in values if predicate(item.value)]


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    length = len(expression)
    while position < length:
        if expression[position:].strip() == "":
            break
        match = _TOKEN_PATTERN.match(expression, position)
        if match is None or match.end() == position:
            raise ValueError(f"Unsupported filter expression near {expression[position:]!r}")
        kind = match.lastgroup or ""
        tokens.append(_Token(kind=kind, text=match.group(kind)))
        position = match.end()
    return tokens


class _FilterParser:
    def __init__(self, tokens: list[_Token], *, tag_name: str | None):
        self._tokens = tokens
        self._index = 0
        self._tag_name = tag_name

    def parse(self) -> ValuePredicate:
        predicate = self._or()
        if self._index != len(self._tokens):
            raise ValueError(f"Unexpected token {self._tokens[self._index].text!r} in filter expression")
        return predicate

    def _or(self) -> ValuePredicate:
        terms = [self._and()]
        while self._accept_word("or"):
            terms.append(self._and())
        if len(terms) == 1:
            return terms[0]
        return lambda value: any(term(value) for term in terms)

    def _and(self) -> ValuePredicate:
        factors = [self._unary()]
        while self._accept_word("and"):
            factors.append(self._unary())
        if len(factors) == 1:
            return factors[0]
        return lambda value: all(factor(value) for factor in factors)

    def _unary(self) -> ValuePredicate:
        if self._accept_word("not"):
            inner = self._unary()
            return lambda value: not inner(value)
        token = self._peek()
        if token is not None and token.kind == "paren" and token.text == "(":
            self._index += 1
            inner = self._or()
            closing = self._next()
            if closing.kind != "paren" or closing.text != ")":
                raise ValueError("Missing ')' in filter expression")
            return inner
        return self._comparison()

    def _comparison(self) -> ValuePredicate:
        operand = self._next()
        if operand.kind not in ("quoted", "dot"):
            raise ValueError(f"Expected a tag reference, got {operand.text!r}")
        self._check_reference(operand)
        operator = self._next()
        if operator.kind != "op":
            raise ValueError(f"Expected a comparison operator, got {operator.text!r}")
        literal = self._next()
        if literal.kind != "number":
            raise ValueError(f"Expected a number, got {literal.text!r}")
        compare = _COMPARATORS[operator.text]
        threshold = float(literal.text)

        def predicate(value: Any) -> bool:
            if not is_numeric_value(value):
                return False
            return compare(float(value), threshold)

        return predicate

    def _check_reference(self, token: _Token) -> None:
        if token.kind == "dot":
            return
        reference = token.text[1:-1].strip()
        if reference in ("", "."):
            return
        try:
            _, referenced_tag = parse_tag_path(reference)
        except ValueError:
            referenced_tag = reference
        if self._tag_name is None or referenced_tag.lower() != self._tag_name.lower():
            raise ValueError(f"Filter expression may only reference the queried tag, got {reference!r}")

    def _accept_word(self, word: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == "word" and token.text.lower() == word:
            self._index += 1
            return True
        return False

    def _peek(self) -> _Token | None:
        if self._index < len(self._tokens):
            return self._tokens[self._index]
        return None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise ValueError("Unexpected end of filter expression")
        self._index += 1
        return token


# ---------------------------------------------------------------------------
# summaries
# ---------------------------------------------------------------------------


def summarize(
    values: Sequence[HistorianValue],
    *,
    start: datetime,
    end: datetime,
    duration_seconds: float,
    summary_type: str,
    calculation_basis: str,
    timestamp_policy: str,
    step: bool,
) -> list[HistorianValue]:
    ordered = sorted(values, key=lambda item: as_utc(item.timestamp))
    stamps = [as_utc(item.timestamp) for item in ordered]
    end_utc = as_utc(end)
    results: list[HistorianValue] = []
    for bucket_start, bucket_end in bucket_bounds(start, end, duration_seconds):
        include_end = bucket_end == end_utc
        events = [
            item
            for item, stamp in zip(ordered, stamps)
            if bucket_start <= stamp < bucket_end or (include_end and stamp == bucket_end)
        ]
        if summary_type == "count":
            count = sum(1 for item in events if item.good)
            stamp = bucket_end if timestamp_policy == "most_recent" else bucket_start
            results.append(HistorianValue(timestamp=stamp, value=count, good=True))
            continue
        if calculation_basis == "event_weighted":
            result = _event_weighted(events, summary_type)
        elif calculation_basis == "time_weighted":
            result = _time_weighted(ordered, stamps, bucket_start, bucket_end, summary_type, step=step)
        else:
            raise ValueError(f"Unsupported calculation basis: {calculation_basis}")
        results.append(_stamp(result, bucket_start, bucket_end, summary_type, timestamp_policy))
    return results


@dataclass(frozen=True)
class _BucketResult:
    value: Any
    good: bool
    extreme_at: datetime | None = None


_NO_DATA_RESULT = _BucketResult(value=NO_DATA, good=False)


def _event_weighted(events: Sequence[HistorianValue], summary_type: str) -> _BucketResult:
    usable = [item for item in events if item.good and is_numeric_value(item.value)]
    if not usable:
        return _NO_DATA_RESULT
    numbers = [float(item.value) for item in usable]
    if summary_type == "average":
        return _BucketResult(value=statistics.fmean(numbers), good=True)
    if summary_type == "total":
        return _BucketResult(value=math.fsum(numbers), good=True)
    if summary_type == "std_dev":
        if len(numbers) < 2:
            return _NO_DATA_RESULT
        return _BucketResult(value=statistics.stdev(numbers), good=True)
    return _extremes(usable, summary_type)


def _time_weighted(
    ordered: Sequence[HistorianValue],
    stamps: Sequence[datetime],
    bucket_start: datetime,
    bucket_end: datetime,
    summary_type: str,
    *,
    step: bool,
) -> _BucketResult:
    edges = [
        _interpolate(ordered, stamps, bucket_start, step=step, integer=False),
        *[item for item, stamp in zip(ordered, stamps) if bucket_start < stamp < bucket_end],
        _interpolate(ordered, stamps, bucket_end, step=step, integer=False),
    ]

    if summary_type in ("minimum", "maximum", "range"):
        usable = [item for item in edges if item.good and is_numeric_value(item.value)]
        if not usable:
            return _NO_DATA_RESULT
        return _extremes(usable, summary_type)

    integral = 0.0
    second_moment = 0.0
    covered = 0.0
    for current, following in zip(edges, edges[1:]):
        seconds = (as_utc(following.timestamp) - as_utc(current.timestamp)).total_seconds()
        if seconds <= 0 or not current.good or not is_numeric_value(current.value):
            continue
        low = float(current.value)
        if step or not following.good or not is_numeric_value(following.value):
            integral += low * seconds
            second_moment += low * low * seconds
        else:
            high = float(following.value)
            integral += (low + high) / 2.0 * seconds
            second_moment += (low * low + low * high + high * high) / 3.0 * seconds
        covered += seconds

    if covered <= 0:
        return _NO_DATA_RESULT
    if summary_type == "total":
        return _BucketResult(value=integral / SECONDS_PER_DAY, good=True)
    mean = integral / covered
    if summary_type == "average":
        return _BucketResult(value=mean, good=True)
    if summary_type == "std_dev":
        return _BucketResult(value=math.sqrt(max(0.0, second_moment / covered - mean * mean)), good=True)
    raise ValueError(f"Unsupported summary type: {summary_type}")


def _extremes(usable: Sequence[HistorianValue], summary_type: str) -> _BucketResult:
    lowest = min(usable, key=lambda item: float(item.value))
    highest = max(usable, key=lambda item: float(item.value))
    if summary_type == "minimum":
        return _BucketResult(value=float(lowest.value), good=True, extreme_at=as_utc(lowest.timestamp))
    if summary_type == "maximum":
        return _BucketResult(value=float(highest.value), good=True, extreme_at=as_utc(highest.timestamp))
    if summary_type == "range":
        return _BucketResult(value=float(highest.value) - float(lowest.value), good=True)
    raise ValueError(f"Unsupported summary type: {summary_type}")


def _stamp(
    result: _BucketResult,
    bucket_start: datetime,
    bucket_end: datetime,
    summary_type: str,
    timestamp_policy: str,
) -> HistorianValue:
    if timestamp_policy == "most_recent":
        stamp = bucket_end
    elif timestamp_policy == "auto" and summary_type in ("minimum", "maximum") and result.extreme_at is not None:
        stamp = result.extreme_at
    else:
        stamp = bucket_start
    return HistorianValue(timestamp=stamp, value=result.value, good=result.good)


def _microseconds(seconds: float) -> int:
    value = int(round(seconds * 1_000_000))
    if value <= 0:
        raise ValueError("duration must be at least one microsecond")
    return value


def _check_result_count(count: int, label: str) -> None:
    if count > MAX_RESULT_COUNT:
        raise ValueError(f"Query would produce {count} {label}; the limit is {MAX_RESULT_COUNT}")


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))
