from typing import Iterable, Optional


class ProvisioningPlanError(Exception):
    """Base class for errors raised while planning or applying a template."""


class CyclicDependencyError(ProvisioningPlanError):
    def __init__(self, nodes: Iterable[str]) -> None:
        self.nodes = tuple(nodes)
        super().__init__(
            f"Module graph contains a dependency cycle: {' -> '.join(self.nodes)}"
        )


class MissingOutputError(ProvisioningPlanError):
    def __init__(self, node: str, reference: str, reason: str) -> None:
        self.node = node
        self.reference = reference
        super().__init__(f"Node '{node}' references {reference}: {reason}")


class ActivationPredicateError(ProvisioningPlanError):
    def __init__(self, node: str, predicate: str, reason: str) -> None:
        self.node = node
        self.predicate = predicate
        super().__init__(
            f"Activation predicate {predicate} of node '{node}' cannot be evaluated: {reason}"
        )


class ProvisioningError(ProvisioningPlanError):
    """Raised when the control plane fails to provision a node.

    ``abandoned`` lists the nodes that were never started because of the failure.
    """

    def __init__(
        self,
        node: str,
        message: str,
        abandoned: Optional[Iterable[str]] = None,
    ) -> None:
        self.node = node
        self.message = message
        self.abandoned = tuple(abandoned or ())
        super().__init__(f"Provisioning of '{node}' failed: {message}")

    def with_abandoned(self, abandoned: Iterable[str]) -> "ProvisioningError":
        error = ProvisioningError(self.node, self.message, abandoned)
        error.__cause__ = self.__cause__
        return error


class SecretExposureError(ProvisioningPlanError):
    pass
