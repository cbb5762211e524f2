"""Environment backed settings for the invoice insights service.

All settings come from environment variables. Key names are case-insensitive
and an empty variable counts as unset. Without a default, an unset key is a
configuration error and raises ValueError naming the key.
"""

import logging
import os

from pytz import timezone
from pytz.tzinfo import BaseTzInfo


class HelperConfig:
    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _raw(self, key: str) -> str | None:
        return os.getenv(key.upper()) or None

    def _missing(self, key: str) -> ValueError:
        return ValueError(f"Environment variable '{key.upper()}' is not set.")

    def get_string_val(self, key: str, default: str | None = None) -> str:
        raw = self._raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        return raw.strip()

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read an int, or a float when the value contains a decimal point.

        Raises:
            ValueError: If unset without default, or not a number.
        """
        raw = self._raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key.upper()}' is not a valid number: '{raw}'.")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """true, 1 and yes (any case) are True; every other set value is False."""
        raw = self._raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        return raw.strip().lower() in ("true", "1", "yes")

    def get_list_val(self, key: str, default: list[str] | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a bracketed list such as "[application/pdf, image/png]".

        Blank elements are dropped and the rest are cast with element_type.

        Raises:
            ValueError: If unset without default, not bracketed, or an element fails the cast.
        """
        raw = self.get_string_val(key, default="")
        if not raw:
            if default is None:
                raise self._missing(key)
            return default
        if not (raw.startswith("[") and raw.endswith("]")):
            raise ValueError(
                f"Environment variable '{key.upper()}' must be in the format "
                f"'[elem1{separator}elem2{separator}...]'. Got: '{raw}'"
            )
        elements = [part.strip() for part in raw[1:-1].split(separator) if part.strip()]
        try:
            return [element_type(element) for element in elements]
        except ValueError as e:
            raise ValueError(f"Environment variable '{key.upper()}' has an element that is not {element_type.__name__}: {e}")

    def get_timezone(self) -> BaseTzInfo:
        """Zone in which invoice dates and month boundaries are interpreted (TIMEZONE, default UTC).

        Raises:
            pytz.UnknownTimeZoneError: If TIMEZONE names an unknown zone.
        """
        return timezone(self.get_string_val("TIMEZONE", default="UTC"))

    def get_logger(self) -> logging.Logger:
        return self._logger
