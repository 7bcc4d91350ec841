"""Module graph resolver.

Builds a ``Plan`` from a set of module nodes: evaluates activation predicates,
derives dependency edges from output references and explicit ordering hints,
validates every reference against the declared module outputs, and produces a
deterministic topological order.
"""
from typing import Any, Iterable, Mapping, Optional

from attrs import define, field
from aws_lambda_powertools import Logger

import common.constants as constants
from common.plan_context import PlanContext
from provisioning.errors import (
    ActivationPredicateError,
    CyclicDependencyError,
    MissingOutputError,
    SecretExposureError,
)
from provisioning.expressions import OutputRef, iter_references, render
from provisioning.nodes import ModuleNode, freeze_mapping
from provisioning.predicates import UnknownParameter
from provisioning.registry import ModuleRegistry

logger = Logger(service=constants.LOGGER_SERVICE, child=True)

RESULT_SET = "outputs"


@define(slots=True, frozen=True)
class TemplateOutput:
    value: Any
    expose_secret: bool = field(
        default=False,
        metadata={"description": "Surface a secret-valued output as plaintext"},
    )


@define(slots=True, frozen=True)
class Plan:
    context: PlanContext
    parameters: Mapping[str, Any] = field(converter=freeze_mapping)
    nodes: Mapping[str, ModuleNode] = field(converter=freeze_mapping)
    order: tuple
    excluded: tuple
    dependencies: Mapping[str, frozenset] = field(converter=freeze_mapping)
    outputs: Mapping[str, TemplateOutput] = field(converter=freeze_mapping)

    def dependents(self, name: str) -> frozenset:
        return frozenset(
            node for node, deps in self.dependencies.items() if name in deps
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_token": self.context.resource_token,
            "tags": self.context.tags.to_dict(),
            "order": list(self.order),
            "excluded": list(self.excluded),
            "nodes": {
                name: {
                    "module": self.nodes[name].module,
                    "depends_on": sorted(self.dependencies[name]),
                    "params": render(self.nodes[name].params),
                }
                for name in self.order
            },
            "outputs": {
                name: render(output.value) for name, output in self.outputs.items()
            },
        }


def build_plan(
    nodes: Iterable[ModuleNode],
    parameters: Mapping[str, Any],
    context: PlanContext,
    registry: ModuleRegistry,
    outputs: Optional[Mapping[str, TemplateOutput]] = None,
) -> Plan:
    declared = _index_nodes(nodes)
    outputs = dict(outputs or {})

    active, excluded = _filter_active(declared, parameters)
    if excluded:
        logger.info("Excluded nodes from plan", excluded=list(excluded))

    dependencies = {
        name: _collect_dependencies(node, declared, active, registry)
        for name, node in active.items()
    }
    _check_result_set(outputs, declared, active, registry)

    order = _topological_order(list(active), dependencies)
    logger.debug("Resolved evaluation order", order=list(order))
    return Plan(
        context=context,
        parameters=parameters,
        nodes=active,
        order=order,
        excluded=tuple(excluded),
        dependencies={name: frozenset(deps) for name, deps in dependencies.items()},
        outputs=outputs,
    )


def _index_nodes(nodes: Iterable[ModuleNode]) -> dict[str, ModuleNode]:
    declared: dict[str, ModuleNode] = {}
    for node in nodes:
        if node.name in declared:
            raise ValueError(f"Duplicate module node name '{node.name}'")
        declared[node.name] = node
    return declared


def _filter_active(
    declared: Mapping[str, ModuleNode], parameters: Mapping[str, Any]
) -> tuple[dict[str, ModuleNode], list[str]]:
    active: dict[str, ModuleNode] = {}
    excluded: list[str] = []
    for name, node in declared.items():
        if node.condition is None:
            active[name] = node
            continue
        try:
            included = node.condition.evaluate(parameters)
        except UnknownParameter as e:
            raise ActivationPredicateError(name, str(node.condition), str(e)) from e
        if included:
            active[name] = node
        else:
            excluded.append(name)
    return active, excluded


def _check_reference(
    owner: str,
    reference: OutputRef,
    declared: Mapping[str, ModuleNode],
    active: Mapping[str, ModuleNode],
    registry: ModuleRegistry,
) -> None:
    if reference.node not in declared:
        raise MissingOutputError(owner, str(reference), "node is not declared")
    if reference.node not in active:
        raise MissingOutputError(
            owner,
            str(reference),
            f"node is excluded by its activation predicate {declared[reference.node].condition}",
        )
    module = registry.get(active[reference.node].module)
    if reference.key not in module.outputs:
        raise MissingOutputError(
            owner,
            str(reference),
            f"module '{module.module_id}' declares no output '{reference.key}'",
        )


def _collect_dependencies(
    node: ModuleNode,
    declared: Mapping[str, ModuleNode],
    active: Mapping[str, ModuleNode],
    registry: ModuleRegistry,
) -> set[str]:
    registry.get(node.module)
    dependencies: set[str] = set()
    for reference in node.references():
        _check_reference(node.name, reference, declared, active, registry)
        dependencies.add(reference.node)
    for hint in node.depends_on:
        if hint not in declared:
            raise MissingOutputError(node.name, hint, "explicit dependency is not declared")
        if hint not in active:
            logger.debug("Dropping ordering hint on excluded node", node=node.name, hint=hint)
            continue
        dependencies.add(hint)
    if node.name in dependencies:
        raise CyclicDependencyError([node.name, node.name])
    return dependencies


def _check_result_set(
    outputs: Mapping[str, TemplateOutput],
    declared: Mapping[str, ModuleNode],
    active: Mapping[str, ModuleNode],
    registry: ModuleRegistry,
) -> None:
    for output_name, output in outputs.items():
        if output.expose_secret:
            _check_exposed_secret(output_name, output, active, registry)
        for reference in iter_references(output.value):
            _check_reference(
                f"{RESULT_SET}.{output_name}", reference, declared, active, registry
            )
            module = registry.get(active[reference.node].module)
            if reference.key in module.secret_outputs and not output.expose_secret:
                raise SecretExposureError(
                    f"Output '{output_name}' references secret {reference} "
                    "without expose_secret"
                )


def _check_exposed_secret(
    output_name: str,
    output: TemplateOutput,
    active: Mapping[str, ModuleNode],
    registry: ModuleRegistry,
) -> None:
    # The exposure path reads exactly one vault secret; composite values would
    # carry the reference string instead of the secret
    reference = output.value
    if not isinstance(reference, OutputRef):
        raise SecretExposureError(
            f"Output '{output_name}' sets expose_secret but is not a bare output reference"
        )
    if reference.node in active:
        module = registry.get(active[reference.node].module)
        if reference.key not in module.secret_outputs:
            raise SecretExposureError(
                f"Output '{output_name}' sets expose_secret on non-secret output {reference}"
            )


def _topological_order(
    names: list[str], dependencies: Mapping[str, set[str]]
) -> tuple[str, ...]:
    # Kahn's algorithm; ties broken by declaration order
    remaining = {name: set(dependencies[name]) for name in names}
    order: list[str] = []
    while remaining:
        ready = [name for name in names if name in remaining and not remaining[name]]
        if not ready:
            raise CyclicDependencyError(_find_cycle(remaining))
        for name in ready:
            order.append(name)
            del remaining[name]
        for deps in remaining.values():
            deps.difference_update(ready)
    return tuple(order)


def _find_cycle(remaining: Mapping[str, set[str]]) -> list[str]:
    # Every remaining node has an unresolved dependency, so walking any of them
    # must revisit a node.
    start = next(iter(remaining))
    path: list[str] = []
    seen: dict[str, int] = {}
    current = start
    while current not in seen:
        seen[current] = len(path)
        path.append(current)
        current = sorted(remaining[current])[0]
    return path[seen[current]:] + [current]
