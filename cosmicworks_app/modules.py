"""Module registry for the CosmicWorks template.

Each module is a pure function of its resolved parameters and the plan context
that returns the resource definition to provision and the outputs it exposes.
"""
from typing import Any, Mapping

import common.constants as constants
from common.plan_context import PlanContext
from provisioning.expressions import ResourceAttr, SecretReference
from provisioning.registry import ModuleRegistry, ModuleResult, ResourceDefinition

KEY_VAULT = "key-vault"
COSMOS_DB_TABLE_ACCOUNT = "cosmos-db-table-account"
CONTAINER_REGISTRY = "container-registry"
MANAGED_IDENTITY = "managed-identity"
CONTAINER_APPS_ENVIRONMENT = "container-apps-environment"
CONTAINER_APP = "container-app"
ROLE_ASSIGNMENT = "role-assignment"

REGISTRY = ModuleRegistry()


@REGISTRY.register(KEY_VAULT, outputs={"id", "name", "uri"})
def key_vault(params: Mapping[str, Any], context: PlanContext) -> ModuleResult:
    name = params["name"]
    return ModuleResult(
        resource=ResourceDefinition(
            name=name,
            type=constants.KEY_VAULT_TYPE,
            location=context.location,
            properties={
                "sku": {"family": "A", "name": "standard"},
                "enable_rbac_authorization": True,
                "enable_soft_delete": True,
                "public_network_access": "Enabled",
            },
            tags=context.tags.to_dict(),
        ),
        outputs={
            "id": ResourceAttr("id"),
            "name": name,
            "uri": constants.KEY_VAULT_URI.format(vault_name=name),
        },
    )


@REGISTRY.register(
    COSMOS_DB_TABLE_ACCOUNT,
    outputs={"id", "name", "endpoint", "table_name", "key"},
    secret_outputs={"key"},
)
def cosmos_db_table_account(
    params: Mapping[str, Any], context: PlanContext
) -> ModuleResult:
    """Serverless Table API account that exports its primary key into the vault."""
    name = params["name"]
    vault_name = params["key_vault_name"]
    secret_name = params["key_secret_name"]
    return ModuleResult(
        resource=ResourceDefinition(
            name=name,
            type=constants.COSMOS_DB_ACCOUNT_TYPE,
            location=context.location,
            properties={
                "kind": "GlobalDocumentDB",
                "database_account_offer_type": "Standard",
                "capabilities": [{"name": capability} for capability in constants.COSMOS_CAPABILITIES],
                "locations": [{"location_name": context.location, "failover_priority": 0}],
                "disable_local_auth": False,
                "tables": [{"name": params["table_name"]}],
                "secrets_export": {
                    "key_vault_name": vault_name,
                    "primary_master_key_secret_name": secret_name,
                },
            },
            tags=context.tags.to_dict(),
        ),
        outputs={
            "id": ResourceAttr("id"),
            "name": name,
            "endpoint": constants.COSMOS_TABLE_ENDPOINT.format(account_name=name),
            "table_name": params["table_name"],
            "key": SecretReference(vault_name=vault_name, secret_name=secret_name),
        },
    )


@REGISTRY.register(CONTAINER_REGISTRY, outputs={"id", "name", "login_server"})
def container_registry(params: Mapping[str, Any], context: PlanContext) -> ModuleResult:
    name = params["name"]
    return ModuleResult(
        resource=ResourceDefinition(
            name=name,
            type=constants.CONTAINER_REGISTRY_TYPE,
            location=context.location,
            properties={
                "sku": {"name": "Standard"},
                "admin_user_enabled": False,
                "anonymous_pull_enabled": False,
                "public_network_access": "Enabled",
            },
            tags=context.tags.to_dict(),
        ),
        outputs={
            "id": ResourceAttr("id"),
            "name": name,
            "login_server": constants.CONTAINER_REGISTRY_LOGIN_SERVER.format(registry_name=name),
        },
    )


@REGISTRY.register(MANAGED_IDENTITY, outputs={"id", "name", "principal_id", "client_id"})
def managed_identity(params: Mapping[str, Any], context: PlanContext) -> ModuleResult:
    return ModuleResult(
        resource=ResourceDefinition(
            name=params["name"],
            type=constants.MANAGED_IDENTITY_TYPE,
            location=context.location,
            tags=context.tags.to_dict(),
        ),
        outputs={
            "id": ResourceAttr("id"),
            "name": params["name"],
            "principal_id": ResourceAttr("principal_id"),
            "client_id": ResourceAttr("client_id"),
        },
    )


@REGISTRY.register(CONTAINER_APPS_ENVIRONMENT, outputs={"id", "name", "default_domain"})
def container_apps_environment(
    params: Mapping[str, Any], context: PlanContext
) -> ModuleResult:
    return ModuleResult(
        resource=ResourceDefinition(
            name=params["name"],
            type=constants.CONTAINER_APPS_ENVIRONMENT_TYPE,
            location=context.location,
            properties={"zone_redundant": False},
            tags=context.tags.to_dict(),
        ),
        outputs={
            "id": ResourceAttr("id"),
            "name": params["name"],
            "default_domain": ResourceAttr("default_domain"),
        },
    )


@REGISTRY.register(ROLE_ASSIGNMENT, outputs={"id", "name"}, await_consistency=True)
def role_assignment(params: Mapping[str, Any], context: PlanContext) -> ModuleResult:
    """Grant a built-in role on a resource; the name is a GUID stable across applies."""
    scope = params["scope"]
    principal_id = params["principal_id"]
    role_id = params["role_id"]
    name = context.build_role_assignment_name(scope, principal_id, role_id)
    return ModuleResult(
        resource=ResourceDefinition(
            name=name,
            type=constants.ROLE_ASSIGNMENT_TYPE,
            location="",
            properties={
                "scope": scope,
                "principal_id": principal_id,
                "principal_type": params["principal_type"],
                "role_definition_id": context.build_role_definition_id(role_id),
            },
        ),
        outputs={"id": ResourceAttr("id"), "name": name},
    )


@REGISTRY.register(CONTAINER_APP, outputs={"id", "name", "fqdn", "uri"})
def container_app(params: Mapping[str, Any], context: PlanContext) -> ModuleResult:
    name = params["name"]
    identity_id = params["identity_id"]
    secrets = params.get("secrets", {})
    fqdn = f"{name}.{params['environment_default_domain']}"
    return ModuleResult(
        resource=ResourceDefinition(
            name=name,
            type=constants.CONTAINER_APP_TYPE,
            location=context.location,
            properties={
                "environment_id": params["environment_id"],
                "identity": {"type": "UserAssigned", "user_assigned_identities": [identity_id]},
                "ingress": {
                    "external": True,
                    "target_port": constants.CONTAINER_TARGET_PORT,
                    "transport": constants.CONTAINER_TRANSPORT,
                    "sticky_sessions": {"affinity": constants.CONTAINER_STICKY_SESSIONS},
                },
                "registries": [
                    {"server": params["registry_login_server"], "identity": identity_id}
                ],
                "secrets": [
                    {"name": secret_name, "key_vault_url": reference.uri, "identity": identity_id}
                    for secret_name, reference in secrets.items()
                ],
                "containers": [
                    {
                        "name": constants.CONTAINER_NAME,
                        "image": params.get("image", constants.CONTAINER_IMAGE),
                        "env": [
                            *(
                                {"name": env_name, "value": value}
                                for env_name, value in params.get("env", {}).items()
                            ),
                            *(
                                {"name": env_name, "secret_ref": secret_name}
                                for env_name, secret_name in params.get("secret_env", {}).items()
                            ),
                        ],
                    }
                ],
                "scale": {
                    "min_replicas": constants.CONTAINER_MIN_REPLICAS,
                    "max_replicas": constants.CONTAINER_MAX_REPLICAS,
                },
            },
            tags=context.tags.extend(
                {constants.TAG_SERVICE_NAME: params["service_name"]}
            ).to_dict(),
        ),
        outputs={
            "id": ResourceAttr("id"),
            "name": name,
            "fqdn": fqdn,
            "uri": f"https://{fqdn}",
        },
    )
