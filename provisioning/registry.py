from typing import Any, Callable, Mapping

from attrs import define, field
from attrs.validators import instance_of, min_len

from common.plan_context import PlanContext
from provisioning.nodes import freeze_mapping


@define(slots=True, frozen=True)
class ResourceDefinition:
    name: str = field(validator=[instance_of(str), min_len(1)])
    type: str = field(validator=[instance_of(str), min_len(1)])
    location: str = field(validator=instance_of(str))
    properties: Mapping[str, Any] = field(factory=dict, converter=freeze_mapping)
    tags: Mapping[str, str] = field(factory=dict, converter=freeze_mapping)


@define(slots=True, frozen=True)
class ModuleResult:
    resource: ResourceDefinition = field(validator=instance_of(ResourceDefinition))
    outputs: Mapping[str, Any] = field(factory=dict, converter=freeze_mapping)


ModuleFunction = Callable[[Mapping[str, Any], PlanContext], ModuleResult]


@define(slots=True, frozen=True)
class ModuleDefinition:
    module_id: str
    build: ModuleFunction
    outputs: frozenset = field(converter=frozenset)
    secret_outputs: frozenset = field(factory=frozenset, converter=frozenset)
    await_consistency: bool = False

    def __attrs_post_init__(self) -> None:
        undeclared = self.secret_outputs - self.outputs
        if undeclared:
            raise ValueError(
                f"Module '{self.module_id}' marks undeclared outputs as secret: {sorted(undeclared)}"
            )


class ModuleRegistry:
    """Maps a module id to a pure function ``(params, context) -> ModuleResult``."""

    def __init__(self) -> None:
        self._modules: dict[str, ModuleDefinition] = {}

    def register(
        self,
        module_id: str,
        outputs,
        secret_outputs=(),
        await_consistency: bool = False,
    ) -> Callable[[ModuleFunction], ModuleFunction]:
        def decorator(build: ModuleFunction) -> ModuleFunction:
            if module_id in self._modules:
                raise ValueError(f"Module '{module_id}' is already registered")
            self._modules[module_id] = ModuleDefinition(
                module_id=module_id,
                build=build,
                outputs=outputs,
                secret_outputs=secret_outputs,
                await_consistency=await_consistency,
            )
            return build

        return decorator

    def get(self, module_id: str) -> ModuleDefinition:
        try:
            return self._modules[module_id]
        except KeyError:
            raise KeyError(f"Module '{module_id}' is not registered") from None

    def __contains__(self, module_id: str) -> bool:
        return module_id in self._modules
