"""Custom exceptions for atsync utilities."""


class CacheKeyNotFoundError(Exception):
    """Raised when a key is not found in the cache."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Key not found in cache: '{key}'")


class DateTimeError(Exception):
    """Base exception for timestamp parsing failures."""


class InvalidDateTimeInputError(DateTimeError):
    """Raised when a timestamp value is empty or missing."""

    def __init__(self, value: str, reason: str) -> None:
        self.value = value
        super().__init__(f"Invalid datetime input '{value}': {reason}")


class DateTimeParsingError(DateTimeError):
    """Raised when a timestamp string cannot be parsed."""

    def __init__(self, value: str, original_exception: Exception) -> None:
        self.value = value
        self.original_exception = original_exception
        super().__init__(f"Failed to parse datetime '{value}': {original_exception}")
