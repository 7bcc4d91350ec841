from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from attrs import define, field
from attrs.validators import deep_iterable, instance_of, min_len, optional

from provisioning.expressions import OutputRef, iter_references
from provisioning.predicates import Predicate


class NodeState(str, Enum):
    PENDING = "Pending"
    EXCLUDED = "Excluded"
    RESOLVING = "Resolving"
    RESOLVED = "Resolved"
    FAILED = "Failed"


def freeze_mapping(params: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(params))


@define(slots=True, frozen=True)
class ModuleNode:
    name: str = field(validator=[instance_of(str), min_len(1)])
    module: str = field(validator=[instance_of(str), min_len(1)])
    params: Mapping[str, Any] = field(factory=dict, converter=freeze_mapping)
    depends_on: tuple = field(
        default=(),
        converter=tuple,
        validator=deep_iterable(instance_of(str)),
        metadata={"description": "Explicit ordering hints on other nodes"},
    )
    condition: Optional[Predicate] = field(
        default=None, validator=optional(instance_of(Predicate))
    )

    def references(self) -> tuple[OutputRef, ...]:
        return tuple(iter_references(self.params))
