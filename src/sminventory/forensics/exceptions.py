"""
Custom exceptions for sminventory.

Every error carries enough structured context (path, expected vs. actual)
for a caller to render a precise message without re-parsing strings.
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for all sminventory errors."""


class HeaderReadError(InventoryError):
    """Raised when a model container header cannot be read."""

    def __init__(self, message: str, path: str = None):
        """
        Initialize HeaderReadError.

        Args:
            message: Description of what went wrong
            path: Path of the file being read
        """
        self.path = path
        full_message = message
        if path:
            full_message += f" (file: {path})"
        super().__init__(full_message)


class HeaderNotFoundError(HeaderReadError, FileNotFoundError):
    """Raised when the file to inspect does not exist."""

    def __init__(self, path: str):
        super().__init__("Model file not found", path=path)


class CorruptHeaderError(HeaderReadError):
    """Raised for an implausible header length or an undecodable header."""

    def __init__(self, detail: str, path: str = None, header_length: Optional[int] = None):
        """
        Initialize CorruptHeaderError.

        Args:
            detail: What is wrong with the header
            path: Path of the file being read
            header_length: Declared header length, if it was decoded
        """
        self.detail = detail
        self.header_length = header_length
        super().__init__(f"Corrupt header: {detail}", path=path)


class ModelFileNotFoundError(InventoryError, FileNotFoundError):
    """Raised when a digest is requested for a file that does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Model file not found: {path}")


class ValidationMismatchError(InventoryError):
    """Raised by ValidationResult.raise_for_mismatch() on a failed validation."""

    def __init__(self, path: str, level: str, reason: str,
                 expected: Optional[str] = None, actual: Optional[str] = None):
        self.path = path
        self.level = level
        self.reason = reason
        self.expected = expected
        self.actual = actual
        message = f"{level} validation failed for {path}: {reason}"
        if expected is not None or actual is not None:
            message += f" (expected {expected}, got {actual})"
        super().__init__(message)


class WorkflowParseError(InventoryError, ValueError):
    """Raised when a workflow document is wholly unreadable."""

    def __init__(self, detail: str, path: str = None):
        self.detail = detail
        self.path = path
        message = f"Cannot parse workflow: {detail}"
        if path:
            message += f" (workflow: {path})"
        super().__init__(message)


class ResolutionAmbiguousError(InventoryError):
    """Raised when a caller demands a single match but several candidates tie."""

    def __init__(self, model_name: str, tier: str, candidate_ids: tuple):
        self.model_name = model_name
        self.tier = tier
        self.candidate_ids = candidate_ids
        super().__init__(
            f"'{model_name}' matches {len(candidate_ids)} {tier} models: "
            f"{', '.join(candidate_ids)}"
        )


class CatalogLookupError(InventoryError):
    """
    Raised when the remote catalog cannot be queried.

    A model that is simply unknown to the catalog is not an error; the
    lookup returns None in that case.
    """
    pass
