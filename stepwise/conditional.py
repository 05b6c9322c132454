"""Conditional logic evaluated against a journey."""

from __future__ import annotations

import inspect
from typing import Any

from .errors import StepConfigurationError


class Conditional:
    """A wrapper for conditional logic that can be evaluated against an object.

    Accepted conditions:

    * ``True``, ``False`` or ``None`` -- their truthiness
    * a ``str`` -- name of an attribute or zero-argument method on the subject
    * a callable -- called with the subject as its only argument
    * a list or tuple -- satisfied when every item is (items are wrapped recursively)
    * another ``Conditional`` -- delegated to

    Callables and methods may be coroutines. The condition is evaluated every
    time ``satisfied_by`` is awaited; results are never cached.
    """

    def __init__(self, condition: Any, negate: bool = False) -> None:
        self._condition = condition
        self._negate = negate
        self._validate(condition)
        if isinstance(condition, (list, tuple)):
            self._condition = tuple(
                c if isinstance(c, Conditional) else Conditional(c) for c in condition
            )

    def __repr__(self) -> str:
        prefix = "not " if self._negate else ""
        return f"Conditional({prefix}{self._condition!r})"

    @classmethod
    def wrap(cls, condition: Any, negate: bool = False) -> "Conditional":
        if isinstance(condition, Conditional) and not negate:
            return condition
        return cls(condition, negate=negate)

    async def satisfied_by(self, subject: Any) -> bool:
        condition = self._condition
        if isinstance(condition, tuple):
            result = True
            for sub_condition in condition:
                if not await sub_condition.satisfied_by(subject):
                    result = False
                    break
        elif isinstance(condition, Conditional):
            result = await condition.satisfied_by(subject)
        elif isinstance(condition, str):
            value = getattr(subject, condition)
            if callable(value):
                value = value()
            result = bool(await _resolve(value))
        elif callable(condition):
            result = bool(await _resolve(condition(subject)))
        else:
            result = bool(condition)

        return not result if self._negate else result

    @staticmethod
    def _validate(condition: Any) -> None:
        if condition is None or isinstance(condition, (bool, str, Conditional)):
            return
        if isinstance(condition, (list, tuple)):
            for item in condition:
                Conditional._validate(item)
            return
        if callable(condition):
            return
        raise StepConfigurationError(
            "condition must be a boolean, None, str, list, Conditional or a callable, "
            f"but was {condition!r}"
        )


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
