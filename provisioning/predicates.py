"""Activation predicates gating whether a module node takes part in a plan."""
from typing import Any, Mapping, Sized

from attrs import define, field
from attrs.validators import deep_iterable, instance_of, min_len


class UnknownParameter(LookupError):
    pass


class Predicate:
    def evaluate(self, parameters: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    @staticmethod
    def _lookup(parameters: Mapping[str, Any], name: str) -> Any:
        if name not in parameters:
            raise UnknownParameter(f"parameter '{name}' is not defined")
        return parameters[name]


@define(slots=True, frozen=True)
class ParameterNotEmpty(Predicate):
    name: str = field(validator=[instance_of(str), min_len(1)])

    def evaluate(self, parameters: Mapping[str, Any]) -> bool:
        # Emptiness is length only; whitespace still counts as a value
        value = self._lookup(parameters, self.name)
        if value is None:
            return False
        if isinstance(value, Sized):
            return len(value) > 0
        return True

    def __str__(self) -> str:
        return f"not_empty({self.name})"


@define(slots=True, frozen=True)
class ParameterEquals(Predicate):
    name: str = field(validator=[instance_of(str), min_len(1)])
    value: Any = None

    def evaluate(self, parameters: Mapping[str, Any]) -> bool:
        return self._lookup(parameters, self.name) == self.value

    def __str__(self) -> str:
        return f"{self.name} == {self.value!r}"


@define(slots=True, frozen=True, init=False)
class AllOf(Predicate):
    predicates: tuple = field(validator=deep_iterable(instance_of(Predicate)))

    def __init__(self, *predicates: Predicate) -> None:
        self.__attrs_init__(tuple(predicates))

    def evaluate(self, parameters: Mapping[str, Any]) -> bool:
        return all(predicate.evaluate(parameters) for predicate in self.predicates)

    def __str__(self) -> str:
        return " and ".join(f"({predicate})" for predicate in self.predicates)


@define(slots=True, frozen=True)
class Not(Predicate):
    predicate: Predicate = field(validator=instance_of(Predicate))

    def evaluate(self, parameters: Mapping[str, Any]) -> bool:
        return not self.predicate.evaluate(parameters)

    def __str__(self) -> str:
        return f"not ({self.predicate})"
