"""Coerces arbitrary date representations into a canonical YYYY-MM-DD string."""

import re
from datetime import date, datetime
from typing import Any, Callable

import pytz

from shared.helper.HelperConfig import HelperConfig

CANONICAL_FORMAT = "%Y-%m-%d"
_CANONICAL_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ORDINAL_RE = re.compile(r"\b(\d{1,2})(st|nd|rd|th)\b", re.IGNORECASE)
_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")

# Tried in order, first match wins. %Y only matches four digits, so two-digit years fall through to %y.
LOCALE_PATTERNS = (
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%m/%d/%y",
    "%m-%d-%y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y/%m/%d",
)


class DateNormalizer:
    """Turns whatever the extraction model (or a stored record) calls a date into YYYY-MM-DD.

    normalize() never raises. Inputs that match no supported representation resolve to
    the current processing date in the configured timezone and are logged.
    """

    def __init__(self, helper_config: HelperConfig, clock: Callable[[], datetime] | None = None):
        self.logging = helper_config.get_logger()
        self._tz = helper_config.get_timezone()
        self._clock = clock or (lambda: datetime.now(self._tz))

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> str:
        return self._clock().strftime(CANONICAL_FORMAT)

    def normalize(self, raw: Any, context: str = "") -> str:
        """Normalize a raw date value.

        Args:
            raw (Any): String, number, date/datetime or anything else.
            context (str): Optional description of where the value came from, used in the log.

        Returns:
            str: A valid calendar date in YYYY-MM-DD form.
        """
        if isinstance(raw, datetime):
            return raw.strftime(CANONICAL_FORMAT)
        if isinstance(raw, date):
            return raw.isoformat()

        if isinstance(raw, str):
            text = raw.strip()
            parsed = (
                self._parse_canonical(text)
                or self._parse_iso_timestamp(text)
                or self._parse_locale_patterns(text)
                or self._parse_millis(text)
            )
            if parsed:
                return parsed
        elif isinstance(raw, (int, float)) and not isinstance(raw, bool):
            parsed = self._parse_millis(raw)
            if parsed:
                return parsed

        fallback = self.today()
        self.logging.warning(
            "Could not normalize date %r%s. Using processing date %s.",
            raw, f" ({context})" if context else "", fallback,
        )
        return fallback

    ##########################################
    ############### PARSERS ##################
    ##########################################

    @staticmethod
    def is_canonical(value: Any) -> bool:
        return isinstance(value, str) and DateNormalizer._parse_canonical(value) is not None

    @staticmethod
    def _parse_canonical(text: str) -> str | None:
        if not _CANONICAL_RE.match(text):
            return None
        try:
            datetime.strptime(text, CANONICAL_FORMAT)
        except ValueError:
            return None
        return text

    @staticmethod
    def _parse_iso_timestamp(text: str) -> str | None:
        if len(text) < 10 or not text[:4].isdigit():
            return None
        candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
        try:
            return datetime.fromisoformat(candidate).strftime(CANONICAL_FORMAT)
        except ValueError:
            return None

    @staticmethod
    def _parse_locale_patterns(text: str) -> str | None:
        cleaned = _ORDINAL_RE.sub(r"\1", text)
        cleaned = re.sub(r"\bSept\b", "Sep", cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r"\s+", " ", cleaned)
        for pattern in LOCALE_PATTERNS:
            try:
                return datetime.strptime(cleaned, pattern).strftime(CANONICAL_FORMAT)
            except ValueError:
                continue
        return None

    @staticmethod
    def _parse_millis(value: str | int | float) -> str | None:
        if isinstance(value, str):
            if not _NUMERIC_RE.match(value):
                return None
            value = float(value)
        if value <= 0:
            return None
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=pytz.utc)
        except (OverflowError, OSError, ValueError):
            return None
        if parsed.year <= 1900:
            return None
        return parsed.strftime(CANONICAL_FORMAT)
