DEFAULT_SERVICE_NAME = "web"
LOGGER_SERVICE = "cosmicworks-provisioner"
SOURCE_REPOSITORY = "https://github.com/azure-samples/cosmos-db-table-python-quickstart"

# Tag keys
TAG_ENV_NAME = "azd-env-name"
TAG_REPO = "repo"
TAG_SERVICE_NAME = "azd-service-name"

# Naming convention: <prefix><separator><resource token>
RESOURCE_TOKEN_LENGTH = 13
RESOURCE_PREFIXES = {
    "KeyVault": "kv",
    "CosmosDbAccount": "cosmos-db-table",
    "ContainerRegistry": "containerreg",
    "ManagedIdentity": "managed-identity",
    "ContainerAppsEnvironment": "container-env",
    "ContainerApp": "container-app",
}
# Registry names only allow alphanumerics
ALPHANUMERIC_RESOURCES = {"ContainerRegistry"}

# Resource provider types
KEY_VAULT_TYPE = "Microsoft.KeyVault/vaults"
COSMOS_DB_ACCOUNT_TYPE = "Microsoft.DocumentDB/databaseAccounts"
CONTAINER_REGISTRY_TYPE = "Microsoft.ContainerRegistry/registries"
MANAGED_IDENTITY_TYPE = "Microsoft.ManagedIdentity/userAssignedIdentities"
CONTAINER_APPS_ENVIRONMENT_TYPE = "Microsoft.App/managedEnvironments"
CONTAINER_APP_TYPE = "Microsoft.App/containerApps"
ROLE_ASSIGNMENT_TYPE = "Microsoft.Authorization/roleAssignments"

# Cosmos DB
COSMOS_CAPABILITIES = ("EnableServerless", "EnableTable")
COSMOS_TABLE_NAME = "cosmicworks-products"
COSMOS_KEY_SECRET_NAME = "azure-cosmos-db-table-key"
COSMOS_TABLE_ENDPOINT = "https://{account_name}.table.cosmos.azure.com:443/"

# Key Vault / Registry endpoints
KEY_VAULT_URI = "https://{vault_name}.vault.azure.net/"
KEY_VAULT_SECRET_URI = "https://{vault_name}.vault.azure.net/secrets/{secret_name}"
CONTAINER_REGISTRY_LOGIN_SERVER = "{registry_name}.azurecr.io"

# Built-in role definitions
ACR_PUSH_ROLE_ID = "8311e382-0749-4cb8-b61a-304f252e45ec"
KEY_VAULT_SECRETS_USER_ROLE_ID = "4633458b-17de-408a-b874-0445c86b69e6"
ROLE_DEFINITION_ID = "/subscriptions/{scope_id}/providers/Microsoft.Authorization/roleDefinitions/{role_id}"
PRINCIPAL_TYPE_USER = "User"
PRINCIPAL_TYPE_SERVICE = "ServicePrincipal"

# Container app
CONTAINER_IMAGE = "mcr.microsoft.com/azuredocs/containerapps-helloworld:latest"
CONTAINER_NAME = "web-front-end"
CONTAINER_TARGET_PORT = 8000
CONTAINER_TRANSPORT = "auto"
CONTAINER_STICKY_SESSIONS = "sticky"
CONTAINER_MIN_REPLICAS = 1
CONTAINER_MAX_REPLICAS = 1

# Template outputs, consumed by the application as environment variables
OUTPUT_ACCOUNT_NAME = "AZURE_COSMOS_TABLE_ACCOUNT_NAME"
OUTPUT_ENDPOINT = "AZURE_COSMOS_TABLE_ENDPOINT"
OUTPUT_KEY = "AZURE_COSMOS_TABLE_KEY"
OUTPUT_TABLE_NAME = "AZURE_COSMOS_TABLE_NAME"
OUTPUT_REGISTRY_ENDPOINT = "AZURE_CONTAINER_REGISTRY_ENDPOINT"
OUTPUT_REGISTRY_NAME = "AZURE_CONTAINER_REGISTRY_NAME"

# Evaluator defaults
DEFAULT_MAX_WORKERS = 4
DEFAULT_CONSISTENCY_TIMEOUT_SECONDS = 60.0
DEFAULT_CONSISTENCY_POLL_SECONDS = 2.0
