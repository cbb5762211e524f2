"""Cheap synchronous checks run before any remote call."""

import re

from shared.errors.InvoiceErrors import InvalidInputError

_TENANT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:@-]{0,127}$")


def validate_tenant_id(tenant_id: str) -> str:
    """
    Raises:
        InvalidInputError: If tenant_id is empty or contains unexpected characters.
    """
    if not isinstance(tenant_id, str) or not _TENANT_ID_RE.match(tenant_id):
        raise InvalidInputError(
            f"Malformed tenant id: {tenant_id!r}",
            user_message="User ID is missing or invalid. Cannot process invoice.",
        )
    return tenant_id


def validate_record_id(record_id: str, is_valid: bool) -> str:
    """
    Args:
        record_id (str): The id to report in the error.
        is_valid (bool): The verdict of the document store's own id check.

    Raises:
        InvalidInputError: If the store rejected the id format.
    """
    if not is_valid:
        raise InvalidInputError(f"Malformed invoice id: {record_id!r}", user_message="Invalid invoice ID format.")
    return record_id


def validate_year_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise InvalidInputError(f"Month out of range: {month}", user_message="Month must be between 1 and 12.")
    if not 1 <= year <= 9999:
        raise InvalidInputError(f"Year out of range: {year}", user_message="Year must be between 1 and 9999.")
