"""
Import error taxonomy.

Fatal conditions raise one of these; per-order problems are recorded on the
import result instead.
"""


class OrderImportError(Exception):
    """Base class for conditions that abort a whole import request."""

    status_code = 400


class UnsupportedFormatError(OrderImportError):
    """The upload is neither a CSV nor a readable XLSX file."""


class EmptyFileError(OrderImportError):
    """The upload parsed to zero data rows."""


class NoShopsConfiguredError(OrderImportError):
    """There is no shop to assign orders to."""


class ShopNotFoundError(OrderImportError):
    """A shop-bound import referenced a shop id that does not exist."""

    status_code = 404


class ReferenceDataError(OrderImportError):
    """Shops, products or existing orders could not be loaded."""

    status_code = 500
