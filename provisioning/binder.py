from types import MappingProxyType
from typing import Any, Mapping

from aws_lambda_powertools import Logger

import common.constants as constants
from provisioning.control_plane import ControlPlane
from provisioning.errors import MissingOutputError, SecretExposureError
from provisioning.expressions import Format, OutputRef, ResourceAttr, SecretReference
from provisioning.plan import TemplateOutput
from provisioning.registry import ModuleDefinition

logger = Logger(service=constants.LOGGER_SERVICE, child=True)


class OutputBinder:
    """Holds the outputs of resolved nodes and substitutes references to them.

    Secret-valued outputs are stored as ``SecretReference`` values and stay
    references when substituted into other nodes' parameters. Only template
    outputs flagged ``expose_secret`` are read back from the vault.
    """

    def __init__(self) -> None:
        self._outputs: dict[str, Mapping[str, Any]] = {}

    def bind(
        self,
        node: str,
        module: ModuleDefinition,
        outputs: Mapping[str, Any],
        attributes: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        if node in self._outputs:
            raise ValueError(f"Outputs of node '{node}' are already bound")
        bound: dict[str, Any] = {}
        for key in sorted(module.outputs):
            reference = str(OutputRef(node, key))
            if key not in outputs:
                raise MissingOutputError(
                    node, reference, f"module '{module.module_id}' did not produce it"
                )
            value = outputs[key]
            if isinstance(value, ResourceAttr):
                if value.name not in attributes:
                    raise MissingOutputError(
                        node,
                        reference,
                        f"control plane returned no attribute '{value.name}'",
                    )
                value = attributes[value.name]
            if key in module.secret_outputs and not isinstance(value, SecretReference):
                raise SecretExposureError(
                    f"Module '{module.module_id}' returned a plaintext value for secret output {reference}"
                )
            bound[key] = value
        self._outputs[node] = MappingProxyType(bound)
        logger.debug("Bound node outputs", node=node, outputs=sorted(bound))
        return self._outputs[node]

    def outputs_of(self, node: str) -> Mapping[str, Any]:
        return self._outputs[node]

    def snapshot(self) -> dict[str, Mapping[str, Any]]:
        return dict(self._outputs)

    def lookup(self, reference: OutputRef) -> Any:
        if reference.node not in self._outputs:
            raise MissingOutputError(
                reference.node, str(reference), "node has not been resolved"
            )
        outputs = self._outputs[reference.node]
        if reference.key not in outputs:
            raise MissingOutputError(
                reference.node, str(reference), "output was not produced"
            )
        return outputs[reference.key]

    def resolve(self, value: Any) -> Any:
        if isinstance(value, OutputRef):
            return self.lookup(value)
        if isinstance(value, Format):
            return value.template.format(*(self.resolve(arg) for arg in value.args))
        if isinstance(value, Mapping):
            return {key: self.resolve(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.resolve(item) for item in value)
        return value

    def resolve_result_set(
        self, outputs: Mapping[str, TemplateOutput], control_plane: ControlPlane
    ) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for name, output in outputs.items():
            value = self.resolve(output.value)
            if output.expose_secret and not isinstance(value, SecretReference):
                raise SecretExposureError(
                    f"Output '{name}' sets expose_secret but does not resolve to a vault secret"
                )
            if isinstance(value, SecretReference):
                if not output.expose_secret:
                    raise SecretExposureError(
                        f"Output '{name}' resolves to a secret without expose_secret"
                    )
                logger.warning(
                    "Exposing secret as plaintext template output",
                    output=name,
                    secret=value.secret_name,
                )
                value = control_plane.read_secret(value)
            result[name] = value
        return result
