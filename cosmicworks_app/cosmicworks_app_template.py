from typing import Optional

import common.constants as constants
from common.plan_context import PlanContext
from common.settings import EvaluatorSettings
from cosmicworks_app import modules
from cosmicworks_app.parameters import TemplateParameters
from provisioning.apply import ApplyResult, apply_plan
from provisioning.control_plane import ControlPlane
from provisioning.expressions import OutputRef, ref
from provisioning.nodes import ModuleNode
from provisioning.plan import Plan, TemplateOutput, build_plan
from provisioning.predicates import ParameterNotEmpty

KEY_VAULT = "key_vault"
COSMOS_DB_ACCOUNT = "cosmos_db_account"
CONTAINER_REGISTRY = "container_registry"
MANAGED_IDENTITY = "managed_identity"
CONTAINER_APPS_ENV = "container_apps_env"
REGISTRY_PUSH_ROLE = "registry_push_role"
VAULT_SECRETS_USER_ROLE = "vault_secrets_user_role"
CONTAINER_APPS_APP = "container_apps_app"


class CosmicWorksAppTemplate:

    def __init__(self, parameters: TemplateParameters) -> None:
        self.parameters = parameters
        self.context = PlanContext(
            scope_id=parameters.scope_id,
            env=parameters.environment_name,
            location=parameters.location,
        )
        self.registry = modules.REGISTRY

        # Secrets vault, receives the exported database key
        self.key_vault = self._build_key_vault()

        # Serverless Table API account
        self.cosmos_db_account = self._build_cosmos_db_account()

        # Container registry and the identity the app pulls images with
        self.container_registry = self._build_container_registry()
        self.managed_identity = self._build_managed_identity()

        self.container_apps_env = self._build_container_apps_environment()

        # Permissions
        # Push access for the deploying user, only when a principal id is supplied
        self.registry_push_role = self._build_registry_push_role()
        # Secret read access for the app identity
        self.vault_secrets_user_role = self._build_vault_secrets_user_role()

        self.container_apps_app = self._build_container_apps_app()

        self.nodes = (
            self.key_vault,
            self.cosmos_db_account,
            self.container_registry,
            self.managed_identity,
            self.container_apps_env,
            self.registry_push_role,
            self.vault_secrets_user_role,
            self.container_apps_app,
        )
        self.outputs = self._build_outputs()

    def plan(self) -> Plan:
        return build_plan(
            self.nodes,
            self.parameters.to_mapping(),
            self.context,
            self.registry,
            outputs=self.outputs,
        )

    def apply(
        self,
        control_plane: ControlPlane,
        settings: Optional[EvaluatorSettings] = None,
    ) -> ApplyResult:
        return apply_plan(self.plan(), control_plane, self.registry, settings)

    # Module nodes

    def _build_key_vault(self) -> ModuleNode:
        return ModuleNode(
            name=KEY_VAULT,
            module=modules.KEY_VAULT,
            params={"name": self.context.build_resource_name("KeyVault")},
        )

    def _build_cosmos_db_account(self) -> ModuleNode:
        return ModuleNode(
            name=COSMOS_DB_ACCOUNT,
            module=modules.COSMOS_DB_TABLE_ACCOUNT,
            params={
                "name": self.context.build_resource_name("CosmosDbAccount"),
                "table_name": constants.COSMOS_TABLE_NAME,
                "key_vault_name": OutputRef(KEY_VAULT, "name"),
                "key_secret_name": constants.COSMOS_KEY_SECRET_NAME,
            },
        )

    def _build_container_registry(self) -> ModuleNode:
        return ModuleNode(
            name=CONTAINER_REGISTRY,
            module=modules.CONTAINER_REGISTRY,
            params={"name": self.context.build_resource_name("ContainerRegistry")},
        )

    def _build_managed_identity(self) -> ModuleNode:
        return ModuleNode(
            name=MANAGED_IDENTITY,
            module=modules.MANAGED_IDENTITY,
            params={"name": self.context.build_resource_name("ManagedIdentity")},
        )

    def _build_container_apps_environment(self) -> ModuleNode:
        return ModuleNode(
            name=CONTAINER_APPS_ENV,
            module=modules.CONTAINER_APPS_ENVIRONMENT,
            params={"name": self.context.build_resource_name("ContainerAppsEnvironment")},
        )

    def _build_registry_push_role(self) -> ModuleNode:
        return ModuleNode(
            name=REGISTRY_PUSH_ROLE,
            module=modules.ROLE_ASSIGNMENT,
            params={
                "scope": OutputRef(CONTAINER_REGISTRY, "id"),
                "principal_id": self.parameters.principal_id,
                "principal_type": constants.PRINCIPAL_TYPE_USER,
                "role_id": constants.ACR_PUSH_ROLE_ID,
            },
            condition=ParameterNotEmpty("principal_id"),
        )

    def _build_vault_secrets_user_role(self) -> ModuleNode:
        return ModuleNode(
            name=VAULT_SECRETS_USER_ROLE,
            module=modules.ROLE_ASSIGNMENT,
            params={
                "scope": OutputRef(KEY_VAULT, "id"),
                "principal_id": OutputRef(MANAGED_IDENTITY, "principal_id"),
                "principal_type": constants.PRINCIPAL_TYPE_SERVICE,
                "role_id": constants.KEY_VAULT_SECRETS_USER_ROLE_ID,
            },
        )

    def _build_container_apps_app(self) -> ModuleNode:
        """The web app reads the table key through its identity, so it waits for the vault grant."""
        return ModuleNode(
            name=CONTAINER_APPS_APP,
            module=modules.CONTAINER_APP,
            params={
                "name": self.context.build_resource_name("ContainerApp"),
                "service_name": self.parameters.service_name,
                "environment_id": OutputRef(CONTAINER_APPS_ENV, "id"),
                "environment_default_domain": OutputRef(CONTAINER_APPS_ENV, "default_domain"),
                "identity_id": OutputRef(MANAGED_IDENTITY, "id"),
                "registry_login_server": OutputRef(CONTAINER_REGISTRY, "login_server"),
                "secrets": {
                    constants.COSMOS_KEY_SECRET_NAME: OutputRef(COSMOS_DB_ACCOUNT, "key"),
                },
                "env": {
                    constants.OUTPUT_ACCOUNT_NAME: OutputRef(COSMOS_DB_ACCOUNT, "name"),
                    constants.OUTPUT_ENDPOINT: OutputRef(COSMOS_DB_ACCOUNT, "endpoint"),
                    constants.OUTPUT_TABLE_NAME: OutputRef(COSMOS_DB_ACCOUNT, "table_name"),
                },
                "secret_env": {
                    constants.OUTPUT_KEY: constants.COSMOS_KEY_SECRET_NAME,
                },
            },
            depends_on=(VAULT_SECRETS_USER_ROLE,),
        )

    # Result set

    def _build_outputs(self) -> dict[str, TemplateOutput]:
        return {
            constants.OUTPUT_ACCOUNT_NAME: TemplateOutput(ref(f"{COSMOS_DB_ACCOUNT}.outputs.name")),
            constants.OUTPUT_ENDPOINT: TemplateOutput(ref(f"{COSMOS_DB_ACCOUNT}.outputs.endpoint")),
            # The application reads its key from this output, not from the vault
            constants.OUTPUT_KEY: TemplateOutput(
                ref(f"{COSMOS_DB_ACCOUNT}.outputs.key"), expose_secret=True
            ),
            constants.OUTPUT_TABLE_NAME: TemplateOutput(
                ref(f"{COSMOS_DB_ACCOUNT}.outputs.table_name")
            ),
            constants.OUTPUT_REGISTRY_ENDPOINT: TemplateOutput(
                ref(f"{CONTAINER_REGISTRY}.outputs.login_server")
            ),
            constants.OUTPUT_REGISTRY_NAME: TemplateOutput(
                ref(f"{CONTAINER_REGISTRY}.outputs.name")
            ),
        }
