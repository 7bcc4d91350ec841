"""Apply a plan against a control plane.

Nodes whose dependencies are all resolved are submitted to a worker pool, so
independent branches provision concurrently. Output binding and scheduling
happen on the calling thread only. The first failure stops scheduling; nodes
already in flight finish and nodes never started are reported as abandoned.
"""
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from types import MappingProxyType
from typing import Any, Mapping, Optional

from attrs import define, field
from aws_lambda_powertools import Logger

import common.constants as constants
from common.settings import EvaluatorSettings
from provisioning.binder import OutputBinder
from provisioning.control_plane import ControlPlane
from provisioning.errors import ProvisioningError
from provisioning.nodes import NodeState, freeze_mapping
from provisioning.plan import Plan
from provisioning.registry import ModuleDefinition, ModuleRegistry, ResourceDefinition

logger = Logger(service=constants.LOGGER_SERVICE, child=True)


@define(slots=True, frozen=True)
class NodeResolution:
    resource: ResourceDefinition
    outputs: Mapping[str, Any] = field(converter=freeze_mapping)
    attributes: Mapping[str, Any] = field(converter=freeze_mapping)


@define(slots=True, frozen=True)
class ApplyResult:
    states: Mapping[str, NodeState] = field(converter=freeze_mapping)
    resources: Mapping[str, ResourceDefinition] = field(converter=freeze_mapping)
    node_outputs: Mapping[str, Mapping[str, Any]] = field(converter=freeze_mapping)
    outputs: Mapping[str, Any] = field(converter=freeze_mapping)


def apply_plan(
    plan: Plan,
    control_plane: ControlPlane,
    registry: ModuleRegistry,
    settings: Optional[EvaluatorSettings] = None,
) -> ApplyResult:
    settings = settings or EvaluatorSettings()
    binder = OutputBinder()
    states = {name: NodeState.PENDING for name in plan.order}
    states.update({name: NodeState.EXCLUDED for name in plan.excluded})
    resources: dict[str, ResourceDefinition] = {}
    in_flight: dict[Future, str] = {}
    failure: Optional[ProvisioningError] = None

    logger.info(
        "Applying plan",
        resource_token=plan.context.resource_token,
        nodes=len(plan.order),
        excluded=list(plan.excluded),
    )
    with ThreadPoolExecutor(max_workers=settings.max_workers) as pool:
        while True:
            ready = _ready_nodes(plan, states) if failure is None else []
            for name in ready:
                try:
                    node = plan.nodes[name]
                    module = registry.get(node.module)
                    params = binder.resolve(dict(node.params))
                    states[name] = NodeState.RESOLVING
                    logger.info("Resolving node", node=name, module_id=node.module)
                    future = pool.submit(
                        _resolve_node, name, module, params, plan, control_plane, settings
                    )
                except Exception as e:
                    states[name] = NodeState.FAILED
                    logger.exception("Node failed before provisioning", node=name)
                    failure = _as_provisioning_error(name, e)
                    break
                in_flight[future] = name
            if not in_flight:
                break
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                name = in_flight.pop(future)
                try:
                    resolution = future.result()
                    binder.bind(
                        name,
                        registry.get(plan.nodes[name].module),
                        resolution.outputs,
                        resolution.attributes,
                    )
                except Exception as e:
                    states[name] = NodeState.FAILED
                    logger.exception("Node failed", node=name)
                    failure = failure or _as_provisioning_error(name, e)
                    continue
                resources[name] = resolution.resource
                states[name] = NodeState.RESOLVED
                logger.info("Resolved node", node=name)

    if failure is not None:
        abandoned = [name for name in plan.order if states[name] is NodeState.PENDING]
        logger.error(
            "Apply aborted", node=failure.node, abandoned=abandoned
        )
        raise failure.with_abandoned(abandoned)

    outputs = binder.resolve_result_set(plan.outputs, control_plane)
    logger.info("Plan applied", outputs=sorted(outputs))
    return ApplyResult(
        states=states,
        resources=resources,
        node_outputs=binder.snapshot(),
        outputs=outputs,
    )


def _ready_nodes(plan: Plan, states: Mapping[str, NodeState]) -> list[str]:
    return [
        name
        for name in plan.order
        if states[name] is NodeState.PENDING
        and all(states[dep] is NodeState.RESOLVED for dep in plan.dependencies[name])
    ]


def _resolve_node(
    name: str,
    module: ModuleDefinition,
    params: Mapping[str, Any],
    plan: Plan,
    control_plane: ControlPlane,
    settings: EvaluatorSettings,
) -> NodeResolution:
    result = module.build(MappingProxyType(params), plan.context)
    attributes = control_plane.provision(name, result.resource)
    if module.await_consistency:
        _await_consistency(name, result.resource, control_plane, settings)
    return NodeResolution(
        resource=result.resource, outputs=result.outputs, attributes=attributes
    )


def _await_consistency(
    name: str,
    resource: ResourceDefinition,
    control_plane: ControlPlane,
    settings: EvaluatorSettings,
) -> None:
    deadline = time.monotonic() + settings.consistency_timeout_seconds
    while not control_plane.is_consistent(name, resource):
        if time.monotonic() >= deadline:
            raise ProvisioningError(
                name,
                f"{resource.type} '{resource.name}' did not become consistent within "
                f"{settings.consistency_timeout_seconds}s",
            )
        logger.debug("Waiting for consistency", node=name)
        time.sleep(settings.consistency_poll_seconds)


def _as_provisioning_error(name: str, error: Exception) -> ProvisioningError:
    if isinstance(error, ProvisioningError):
        return error
    wrapped = ProvisioningError(name, str(error))
    wrapped.__cause__ = error
    return wrapped
