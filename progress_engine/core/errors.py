"""Error taxonomy for the progress engine.

Propagation policy:
  - ValidationError / UnknownReference: terminal for the offending event,
    never retried.
  - ConcurrencyConflict / ConcurrencyExhausted: retryable; the aggregator
    retries a bounded number of times, then the worker pool requeues.
  - ConfigError: fails startup, or rejects a hot reload as a whole.
  - NotificationDeliveryError: logged and parked; never rolls back an unlock.
"""

from __future__ import annotations


class ProgressEngineError(Exception):
    retryable = False


class ValidationError(ProgressEngineError):
    """An inbound event failed validation.  `field` names the culprit."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class UnknownReference(ValidationError):
    """An event or a config entry references a topic/path/tag/phase that does
    not exist in the content catalog."""


class ConcurrencyConflict(ProgressEngineError):
    retryable = True

    def __init__(self, aggregate: str, key: str, expected_version: int) -> None:
        super().__init__(
            f"version conflict on {aggregate} {key} (expected v{expected_version})"
        )
        self.aggregate = aggregate
        self.key = key
        self.expected_version = expected_version


class ConcurrencyExhausted(ConcurrencyConflict):
    """Compare-and-set kept losing; the caller should redeliver the event."""

    def __init__(self, aggregate: str, key: str, attempts: int) -> None:
        ProgressEngineError.__init__(
            self, f"gave up on {aggregate} {key} after {attempts} attempts"
        )
        self.aggregate = aggregate
        self.key = key
        self.expected_version = -1
        self.attempts = attempts


class ConfigError(ProgressEngineError):
    """Achievement/milestone/rule definitions are malformed or reference
    unknown content.  `source` names the file or definition id."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class NotificationDeliveryError(ProgressEngineError):
    retryable = True


class SearchProviderError(ProgressEngineError):
    retryable = True
