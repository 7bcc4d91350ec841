"""Control plane collaborators.

``ControlPlane`` is the contract the apply executor talks to. The in-memory
implementation stands in for the cloud APIs: it derives identifiers and keys
deterministically from the resource definition, upserts by resource id, and
keeps exported secrets in per-vault stores.
"""
import base64
import hashlib
import threading
import uuid
from typing import Any, Iterable, Mapping, Optional, Protocol

from aws_lambda_powertools import Logger

import common.constants as constants
from common.plan_context import PlanContext
from provisioning.errors import ProvisioningError
from provisioning.expressions import SecretReference
from provisioning.registry import ResourceDefinition

logger = Logger(service=constants.LOGGER_SERVICE, child=True)


class ControlPlane(Protocol):
    def provision(self, node: str, resource: ResourceDefinition) -> Mapping[str, Any]:
        """Create or update a resource and return its attributes."""
        ...

    def is_consistent(self, node: str, resource: ResourceDefinition) -> bool:
        ...

    def read_secret(self, reference: SecretReference) -> str:
        ...


class InMemoryControlPlane:
    def __init__(
        self,
        context: PlanContext,
        fail_on: Iterable[str] = (),
        consistency_lag: Optional[Mapping[str, int]] = None,
    ) -> None:
        self.context = context
        self.fail_on = frozenset(fail_on)
        self._lag = dict(consistency_lag or {})
        self._lock = threading.Lock()
        self.resources: dict[str, ResourceDefinition] = {}
        self.calls: list[str] = []
        self._vaults: dict[str, dict[str, str]] = {}

    def provision(self, node: str, resource: ResourceDefinition) -> Mapping[str, Any]:
        if node in self.fail_on:
            raise ProvisioningError(node, f"control plane rejected {resource.type} '{resource.name}'")
        resource_id = self.context.build_resource_id(resource.type, resource.name)
        with self._lock:
            self.calls.append(node)
            self.resources[resource_id] = resource
            attributes = {"id": resource_id, "name": resource.name}
            attributes.update(self._type_attributes(node, resource, resource_id))
        logger.info("Provisioned resource", node=node, resource_id=resource_id)
        return attributes

    def is_consistent(self, node: str, resource: ResourceDefinition) -> bool:
        with self._lock:
            remaining = self._lag.get(node, 0)
            if remaining > 0:
                self._lag[node] = remaining - 1
                return False
            return True

    def read_secret(self, reference: SecretReference) -> str:
        with self._lock:
            vault = self._vaults.get(reference.vault_name)
            if vault is None or reference.secret_name not in vault:
                raise ProvisioningError(
                    reference.vault_name, f"secret '{reference.secret_name}' not found"
                )
            return vault[reference.secret_name]

    def secret_names(self, vault_name: str) -> frozenset:
        with self._lock:
            return frozenset(self._vaults.get(vault_name, {}))

    # Caller holds the lock
    def _type_attributes(
        self, node: str, resource: ResourceDefinition, resource_id: str
    ) -> dict[str, Any]:
        if resource.type == constants.KEY_VAULT_TYPE:
            self._vaults.setdefault(resource.name, {})
            return {}
        if resource.type == constants.MANAGED_IDENTITY_TYPE:
            return {
                "principal_id": str(uuid.uuid5(uuid.NAMESPACE_URL, f"{resource_id}/principal")),
                "client_id": str(uuid.uuid5(uuid.NAMESPACE_URL, f"{resource_id}/client")),
            }
        if resource.type == constants.CONTAINER_APPS_ENVIRONMENT_TYPE:
            suffix = hashlib.sha256(resource_id.encode("utf-8")).hexdigest()[:10]
            return {"default_domain": f"{suffix}.{resource.location}.azurecontainerapps.io"}
        if resource.type == constants.COSMOS_DB_ACCOUNT_TYPE:
            self._export_secrets(node, resource, resource_id)
            return {}
        return {}

    def _export_secrets(
        self, node: str, resource: ResourceDefinition, resource_id: str
    ) -> None:
        export = resource.properties.get("secrets_export")
        if not export:
            return
        vault_name = export["key_vault_name"]
        if vault_name not in self._vaults:
            raise ProvisioningError(node, f"key vault '{vault_name}' does not exist")
        key = base64.b64encode(
            hashlib.sha512(f"{resource_id}/primaryMasterKey".encode("utf-8")).digest()
        ).decode("ascii")
        self._vaults[vault_name][export["primary_master_key_secret_name"]] = key
