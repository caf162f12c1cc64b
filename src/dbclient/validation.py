"""
Argument validation against declared or inferred type tags.

Validation is pure: it returns diagnoses and never touches a driver. The
query decides from the policy when to validate and which error to raise.
"""
import decimal
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dbclient.schema import ValidationPolicy
from dbclient.types import BINARY_TYPES, Argument, ArgumentKind, TypeTag
from dbclient.types import infer_type

__all__ = [
    'Phase',
    'Diagnosis',
    'ValidationReport',
    'ArgumentValidator',
    'validate_arguments',
]

_INTEGER_STRING = re.compile(r'^\s*[-+]?\d+\s*$')
_FLOAT_STRING = re.compile(r'^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?\s*$')

NOT_STRINGABLE = 'not-stringable'


class Phase(str, Enum):
    PREPARE = 'prepare'
    EXECUTE = 'execute'
    FAILURE = 'failure'


@dataclass(frozen=True, slots=True)
class Diagnosis:
    """Outcome of validating one argument."""
    index: int
    tag: TypeTag
    ok: bool = True
    reason: str | None = None
    value_type: str | None = None

    @property
    def not_stringable(self) -> bool:
        return self.reason == NOT_STRINGABLE

    def __str__(self) -> str:
        if self.ok:
            return f'{self.index}:{self.tag.value} ok'
        return f'{self.index}:{self.tag.value} {self.value_type} {self.reason}'


@dataclass
class ValidationReport:
    """Diagnoses of every argument of one validation run."""
    phase: Phase
    diagnoses: list[Diagnosis] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(d.ok for d in self.diagnoses)

    @property
    def failures(self) -> list[Diagnosis]:
        return [d for d in self.diagnoses if not d.ok]

    @property
    def only_not_stringable(self) -> bool:
        failures = self.failures
        return bool(failures) and all(d.not_stringable for d in failures)

    def __str__(self) -> str:
        if self.ok:
            return f'{self.phase.value}: all {len(self.diagnoses)} arguments valid'
        return f'{self.phase.value}: ' + ', '.join(str(d) for d in self.failures)


def _check_integer(value: Any) -> str | None:
    if isinstance(value, (bool, int)):
        return None
    if isinstance(value, str):
        if _INTEGER_STRING.match(value):
            return None
        return 'string not integer'
    if isinstance(value, decimal.Decimal) and value == value.to_integral_value():
        return None
    return 'not integer'


def _check_float(value: Any) -> str | None:
    if isinstance(value, bool):
        return 'not float'
    if isinstance(value, int):
        return None
    if isinstance(value, float):
        return None if math.isfinite(value) else 'float not finite'
    if isinstance(value, decimal.Decimal):
        return None if value.is_finite() else 'decimal not finite'
    if isinstance(value, str):
        return None if _FLOAT_STRING.match(value) else 'string not numeric'
    return 'not float'


def _check_binary(value: Any) -> str | None:
    if isinstance(value, BINARY_TYPES):
        return None
    return 'not bytes'


class ArgumentValidator:
    """Checks argument values against type tags.

    A `None` value is SQL NULL and valid for every tag. A string tagged
    object must have a string conversion of its own; anything else fails
    with the distinct `not-stringable` reason.
    """

    def check(self, index: int, argument: Argument, tag: TypeTag) -> Diagnosis:
        value = argument.value
        value_type = type(value).__name__
        if argument.kind is ArgumentKind.NULL:
            return Diagnosis(index, tag)
        match tag:
            case TypeTag.INTEGER:
                reason = _check_integer(value)
            case TypeTag.FLOAT:
                reason = _check_float(value)
            case TypeTag.BINARY:
                reason = _check_binary(value)
            case _:
                if argument.kind is ArgumentKind.UNCONVERTIBLE:
                    reason = NOT_STRINGABLE
                elif isinstance(value, bool):
                    reason = 'bool not string'
                elif isinstance(value, BINARY_TYPES):
                    reason = 'bytes not string'
                else:
                    reason = None
        return Diagnosis(index, tag, reason is None, reason, value_type)

    def validate(self, value: Any, tag: TypeTag | None, phase: Phase,
                 policy: ValidationPolicy, index: int = 0) -> Diagnosis | None:
        """Validate one value, or return None when the policy skips the phase.

        The string conversion check of objects is never skipped.
        """
        argument = value if isinstance(value, Argument) else Argument.of(value)
        tag = tag or infer_type(argument.value)
        if policy.applies(phase):
            return self.check(index, argument, tag)
        if tag is TypeTag.STRING and argument.kind is ArgumentKind.UNCONVERTIBLE:
            return Diagnosis(index, tag, False, NOT_STRINGABLE, type(argument.value).__name__)
        return None


def validate_arguments(values: Sequence, tags: Sequence[TypeTag] | None,
                       phase: Phase, policy: ValidationPolicy) -> ValidationReport:
    """Validate every argument, never stopping at the first failure.

    Args:
        values: Argument values, or classified `Argument` entries
        tags: Declared tags, or None to infer each one
    """
    validator = ArgumentValidator()
    report = ValidationReport(phase)
    for index, value in enumerate(values):
        tag = tags[index] if tags else None
        diagnosis = validator.validate(value, tag, phase, policy, index)
        if diagnosis is not None:
            report.diagnoses.append(diagnosis)
    return report
