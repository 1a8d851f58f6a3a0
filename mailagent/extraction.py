"""Pattern-driven extraction of operations from alarm message text."""

from __future__ import annotations

import locale
import math
from datetime import datetime

import regex
import structlog
from dateutil import parser as date_parser

from .config import ExtractionPatterns
from .models import Address, Operation, OperationProperty, Position, Reporter

logger = structlog.get_logger()

MATCH_TIMEOUT_SECONDS = 2.0
RIC_SEPARATOR = "; "

_SEPARATORS = regex.compile(r"[.,]")


def _compile(pattern: str) -> regex.Pattern[str] | None:
    return regex.compile(pattern) if pattern else None


class OperationEvaluator:
    """Turns free-form text into an :class:`Operation`.

    Each field takes the first capture group of the first match of its
    pattern, stripped; a missing match yields an empty string. The RIC
    field joins the first group of every match with ``"; "``. Every
    match call is bounded by *timeout* seconds and raises
    ``TimeoutError`` when exceeded, which guards against catastrophic
    backtracking in operator-supplied patterns.

    Evaluation is deterministic for a given text, configuration and
    decimal separator, except that ``start`` falls back to the current
    time when the start text does not parse.
    """

    def __init__(
        self,
        patterns: ExtractionPatterns,
        *,
        timeout: float = MATCH_TIMEOUT_SECONDS,
        decimal_separator: str | None = None,
    ) -> None:
        self._patterns = patterns
        self._timeout = timeout
        self._decimal_separator = decimal_separator or locale.localeconv()["decimal_point"]
        self._start = _compile(patterns.start_pattern)
        self._keyword = _compile(patterns.keyword_pattern)
        self._facts = _compile(patterns.facts_pattern)
        self._street = _compile(patterns.street_pattern)
        self._house_number = _compile(patterns.house_number_pattern)
        self._city = _compile(patterns.city_pattern)
        self._district = _compile(patterns.district_pattern)
        self._zip_code = _compile(patterns.zip_code_pattern)
        self._ric = _compile(patterns.ric_pattern)
        self._longitude = _compile(patterns.longitude_pattern)
        self._latitude = _compile(patterns.latitude_pattern)
        self._reporter_name = _compile(patterns.reporter_name_pattern)
        self._reporter_phone = _compile(patterns.reporter_phone_pattern)
        self._number = _compile(patterns.number_pattern)
        self._additional = [
            (field.name, regex.compile(field.pattern)) for field in patterns.additional_properties
        ]

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _first(self, pattern: regex.Pattern[str] | None, text: str) -> str:
        if pattern is None:
            return ""
        match = pattern.search(text, timeout=self._timeout)
        if match is None:
            return ""
        return (match.group(1) or "").strip()

    def _all(self, pattern: regex.Pattern[str] | None, text: str) -> list[str]:
        if pattern is None:
            return []
        values = (
            (match.group(1) or "").strip()
            for match in pattern.finditer(text, timeout=self._timeout)
        )
        return [value for value in values if value]

    # ------------------------------------------------------------------
    # Conversions
    # ------------------------------------------------------------------

    def _parse_coordinate(self, value: str) -> float | None:
        if not value:
            return None
        # accept both separator styles regardless of locale
        normalized = _SEPARATORS.sub(lambda _: self._decimal_separator, value)
        try:
            number = float(normalized.replace(self._decimal_separator, "."))
        except ValueError:
            return None
        return number if math.isfinite(number) else None

    def _parse_start(self, value: str) -> datetime:
        if value:
            try:
                parsed = date_parser.parse(value, dayfirst=self._patterns.start_day_first)
                # naive times are local wall-clock times
                return parsed if parsed.tzinfo is not None else parsed.astimezone()
            except (ValueError, OverflowError, OSError):
                logger.debug("operation_start_unparsable", value=value)
        return datetime.now().astimezone()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, text: str) -> Operation:
        keyword = self._first(self._keyword, text)
        facts = self._first(self._facts, text)
        number = self._first(self._number, text)
        ric = RIC_SEPARATOR.join(self._all(self._ric, text))
        start = self._parse_start(self._first(self._start, text))

        address = Address(
            street=self._first(self._street, text),
            house_number=self._first(self._house_number, text),
            zip_code=self._first(self._zip_code, text),
            city=self._first(self._city, text),
            district=self._first(self._district, text),
        )
        has_address = any(
            (address.street, address.house_number, address.zip_code, address.city, address.district)
        )

        longitude = self._parse_coordinate(self._first(self._longitude, text))
        latitude = self._parse_coordinate(self._first(self._latitude, text))
        position = (
            Position(longitude=longitude, latitude=latitude)
            if longitude is not None and latitude is not None
            else None
        )

        reporter_name = self._first(self._reporter_name, text)
        reporter_phone = self._first(self._reporter_phone, text)
        reporter = (
            Reporter(name=reporter_name, phone=reporter_phone)
            if reporter_name or reporter_phone
            else None
        )

        properties: list[OperationProperty] = []
        for name, pattern in self._additional:
            value = self._first(pattern, text)
            if value:
                properties.append(OperationProperty(key=name, value=value))

        operation = Operation(
            start=start,
            keyword=keyword,
            facts=facts,
            address=address if has_address else None,
            position=position,
            reporter=reporter,
            ric=ric,
            number=number,
            properties=tuple(properties),
        )
        logger.debug(
            "operation_evaluated",
            number=number,
            keyword=keyword,
            has_position=position is not None,
            properties=len(properties),
        )
        return operation
