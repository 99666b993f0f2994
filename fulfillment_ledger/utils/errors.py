# utils/errors.py
from __future__ import annotations

from typing import Mapping


class EngineError(Exception):
    """Base class for errors a controller can surface directly to the operator."""


class DataIntegrityWarning(UserWarning):
    """
    Upstream data is inconsistent (e.g. a line fulfilled + returned beyond what
    was ordered). Returned inline and logged; never raised by the engine.
    """

    def __init__(self, message: str, *, order_id=None, line_id=None, raw_remaining=None):
        super().__init__(message)
        self.order_id = order_id
        self.line_id = line_id
        self.raw_remaining = raw_remaining


class ValidationError(EngineError):
    """Operator input cannot be submitted. `problems` maps line_id -> reason."""

    def __init__(self, message: str, problems: Mapping[object, str] | None = None):
        super().__init__(message)
        self.problems: dict[object, str] = dict(problems or {})

    @property
    def line_ids(self) -> list:
        return list(self.problems.keys())

    @classmethod
    def for_lines(cls, problems: Mapping[object, str]) -> "ValidationError":
        parts = [f"line {lid}: {why}" for lid, why in problems.items()]
        return cls("Cannot submit: " + "; ".join(parts), problems)


class IntegrationError(EngineError):
    """The remote back-office API could not be reached or answered with a failure."""

    def __init__(self, message: str, *, endpoint: str | None = None):
        super().__init__(message)
        self.endpoint = endpoint


class StateConflict(EngineError):
    """Selections are active on another order."""

    def __init__(self, active_order_id, requested_order_id):
        super().__init__(
            f"Order {active_order_id} has active selections; finish or clear it "
            f"before working on order {requested_order_id}."
        )
        self.active_order_id = active_order_id
        self.requested_order_id = requested_order_id


