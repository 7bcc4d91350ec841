import re

import pytest

import common.constants as constants
from cosmicworks_app import cosmicworks_app_template as cw
from cosmicworks_app.parameters import TemplateParameters
from governance_checks import assert_no_plaintext_secrets, assert_tag_compliance
from plan_test_helpers import (
    TEST_PRINCIPAL_ID,
    TEST_SCOPE_ID,
    NamingTestCase,
    OutputTestCase,
    RoleAssignmentTestCase,
    build_parameters,
    build_template,
    fast_settings,
    template,
    template_with_principal,
)
from provisioning.control_plane import InMemoryControlPlane
from provisioning.errors import ProvisioningError
from provisioning.nodes import NodeState

# ----------------------------- Topology smoke tests ------------------------

NODES = [
    cw.KEY_VAULT,
    cw.COSMOS_DB_ACCOUNT,
    cw.CONTAINER_REGISTRY,
    cw.MANAGED_IDENTITY,
    cw.CONTAINER_APPS_ENV,
    cw.VAULT_SECRETS_USER_ROLE,
    cw.CONTAINER_APPS_APP,
]


def test_plan_without_principal_excludes_registry_push_grant(template: cw.CosmicWorksAppTemplate):
    plan = template.plan()
    assert plan.excluded == (cw.REGISTRY_PUSH_ROLE,)
    assert sorted(plan.order) == sorted(NODES)


def test_plan_with_principal_includes_registry_push_grant(
    template_with_principal: cw.CosmicWorksAppTemplate,
):
    plan = template_with_principal.plan()
    assert plan.excluded == ()
    assert cw.REGISTRY_PUSH_ROLE in plan.order


def test_grant_nodes_are_independent_branches(
    template_with_principal: cw.CosmicWorksAppTemplate,
):
    plan = template_with_principal.plan()
    push, vault = cw.REGISTRY_PUSH_ROLE, cw.VAULT_SECRETS_USER_ROLE
    assert push not in plan.dependencies[vault]
    assert vault not in plan.dependencies[push]
    assert plan.dependencies[push] == frozenset({cw.CONTAINER_REGISTRY})
    assert plan.dependencies[vault] == frozenset({cw.KEY_VAULT, cw.MANAGED_IDENTITY})


def test_app_waits_for_vault_secrets_grant(template: cw.CosmicWorksAppTemplate):
    plan = template.plan()
    assert plan.order.index(cw.VAULT_SECRETS_USER_ROLE) < plan.order.index(cw.CONTAINER_APPS_APP)
    assert plan.dependencies[cw.CONTAINER_APPS_APP] == frozenset(
        {
            cw.CONTAINER_APPS_ENV,
            cw.MANAGED_IDENTITY,
            cw.CONTAINER_REGISTRY,
            cw.COSMOS_DB_ACCOUNT,
            cw.VAULT_SECRETS_USER_ROLE,
        }
    )


def test_cosmos_account_depends_on_vault_for_secret_export(template: cw.CosmicWorksAppTemplate):
    assert template.plan().dependencies[cw.COSMOS_DB_ACCOUNT] == frozenset({cw.KEY_VAULT})


# ----------------------------- Naming tests ------------------------

NAMING_TEST_CASES = (
    NamingTestCase(id="key_vault", node=cw.KEY_VAULT, name_pattern=r"kv-[a-z2-7]{13}"),
    NamingTestCase(
        id="cosmos", node=cw.COSMOS_DB_ACCOUNT, name_pattern=r"cosmos-db-table-[a-z2-7]{13}"
    ),
    NamingTestCase(
        id="registry", node=cw.CONTAINER_REGISTRY, name_pattern=r"containerreg[a-z2-7]{13}"
    ),
    NamingTestCase(
        id="identity", node=cw.MANAGED_IDENTITY, name_pattern=r"managed-identity-[a-z2-7]{13}"
    ),
    NamingTestCase(
        id="environment", node=cw.CONTAINER_APPS_ENV, name_pattern=r"container-env-[a-z2-7]{13}"
    ),
    NamingTestCase(
        id="app", node=cw.CONTAINER_APPS_APP, name_pattern=r"container-app-[a-z2-7]{13}"
    ),
)


@pytest.mark.parametrize("case", NAMING_TEST_CASES, ids=lambda test: test.id)
def test_resource_names_carry_the_resource_token(
    template: cw.CosmicWorksAppTemplate, case: NamingTestCase
):
    name = template.plan().nodes[case.node].params["name"]
    assert re.fullmatch(case.name_pattern, name)
    assert name.endswith(template.context.resource_token)


def test_names_are_identical_across_evaluations():
    first, second = build_template(), build_template()
    assert first.context.resource_token == second.context.resource_token
    assert first.plan().to_dict() == second.plan().to_dict()


def test_names_differ_between_environments():
    dev = build_template()
    prod = build_template(environment_name="prod")
    assert dev.context.resource_token != prod.context.resource_token


# ----------------------------- Apply scenario tests ------------------------

OUTPUT_TEST_CASES = (
    OutputTestCase(
        id="account_name", output=constants.OUTPUT_ACCOUNT_NAME, pattern=r"cosmos-db-table-[a-z2-7]{13}"
    ),
    OutputTestCase(
        id="endpoint",
        output=constants.OUTPUT_ENDPOINT,
        pattern=r"https://cosmos-db-table-[a-z2-7]{13}\.table\.cosmos\.azure\.com:443/",
    ),
    OutputTestCase(id="key", output=constants.OUTPUT_KEY, pattern=r"[A-Za-z0-9+/]+=*"),
    OutputTestCase(id="table", output=constants.OUTPUT_TABLE_NAME, pattern=r"cosmicworks-products"),
    OutputTestCase(
        id="registry_endpoint",
        output=constants.OUTPUT_REGISTRY_ENDPOINT,
        pattern=r"containerreg[a-z2-7]{13}\.azurecr\.io",
    ),
)


@pytest.mark.parametrize("case", OUTPUT_TEST_CASES, ids=lambda test: test.id)
def test_apply_without_principal_produces_outputs(
    template: cw.CosmicWorksAppTemplate, case: OutputTestCase
):
    control_plane = InMemoryControlPlane(template.context)
    result = template.apply(control_plane, fast_settings())

    assert re.fullmatch(case.pattern, result.outputs[case.output])
    assert result.states[cw.REGISTRY_PUSH_ROLE] is NodeState.EXCLUDED
    assert result.states[cw.VAULT_SECRETS_USER_ROLE] is NodeState.RESOLVED


def test_exposed_key_matches_the_vault_secret(template: cw.CosmicWorksAppTemplate):
    control_plane = InMemoryControlPlane(template.context)
    result = template.apply(control_plane, fast_settings())
    vault_name = result.node_outputs[cw.KEY_VAULT]["name"]

    assert constants.COSMOS_KEY_SECRET_NAME in control_plane.secret_names(vault_name)
    assert result.outputs[constants.OUTPUT_KEY] == control_plane.read_secret(
        result.node_outputs[cw.COSMOS_DB_ACCOUNT]["key"]
    )


def test_apply_with_principal_grants_registry_push(
    template_with_principal: cw.CosmicWorksAppTemplate,
):
    control_plane = InMemoryControlPlane(template_with_principal.context)
    result = template_with_principal.apply(control_plane, fast_settings())

    grant = result.resources[cw.REGISTRY_PUSH_ROLE]
    assert grant.properties["principal_id"] == TEST_PRINCIPAL_ID
    assert grant.properties["scope"] == result.node_outputs[cw.CONTAINER_REGISTRY]["id"]


def test_apply_is_idempotent():
    first_template, second_template = build_template(), build_template()
    first = first_template.apply(InMemoryControlPlane(first_template.context), fast_settings())
    second = second_template.apply(InMemoryControlPlane(second_template.context), fast_settings())

    assert dict(first.outputs) == dict(second.outputs)
    assert {name: res.name for name, res in first.resources.items()} == {
        name: res.name for name, res in second.resources.items()
    }


def test_reapply_against_same_control_plane_upserts(template: cw.CosmicWorksAppTemplate):
    control_plane = InMemoryControlPlane(template.context)
    template.apply(control_plane, fast_settings())
    resource_ids = set(control_plane.resources)
    template.apply(control_plane, fast_settings())
    assert set(control_plane.resources) == resource_ids


def test_app_waits_for_grant_to_become_consistent(template: cw.CosmicWorksAppTemplate):
    control_plane = InMemoryControlPlane(
        template.context, consistency_lag={cw.VAULT_SECRETS_USER_ROLE: 3}
    )
    template.apply(control_plane, fast_settings())
    assert control_plane.calls.index(cw.VAULT_SECRETS_USER_ROLE) < control_plane.calls.index(
        cw.CONTAINER_APPS_APP
    )


def test_grant_that_never_becomes_consistent_aborts_the_app(
    template: cw.CosmicWorksAppTemplate,
):
    control_plane = InMemoryControlPlane(
        template.context, consistency_lag={cw.VAULT_SECRETS_USER_ROLE: 10_000}
    )
    with pytest.raises(ProvisioningError) as error:
        template.apply(control_plane, fast_settings(consistency_timeout_seconds=0.05))

    assert error.value.node == cw.VAULT_SECRETS_USER_ROLE
    assert cw.CONTAINER_APPS_APP in error.value.abandoned
    assert cw.CONTAINER_APPS_APP not in control_plane.calls


# ----------------------------- Resource configuration tests ------------------------


@pytest.fixture
def applied(template: cw.CosmicWorksAppTemplate):
    control_plane = InMemoryControlPlane(template.context)
    return template.apply(control_plane, fast_settings())


def test_cosmos_account_is_serverless_table_api(applied):
    account = applied.resources[cw.COSMOS_DB_ACCOUNT]
    assert account.type == constants.COSMOS_DB_ACCOUNT_TYPE
    assert [capability["name"] for capability in account.properties["capabilities"]] == [
        "EnableServerless",
        "EnableTable",
    ]
    assert account.properties["tables"] == [{"name": "cosmicworks-products"}]
    assert account.properties["secrets_export"] == {
        "key_vault_name": applied.node_outputs[cw.KEY_VAULT]["name"],
        "primary_master_key_secret_name": constants.COSMOS_KEY_SECRET_NAME,
    }


def test_container_app_ingress_and_scale(applied):
    app = applied.resources[cw.CONTAINER_APPS_APP].properties
    assert app["ingress"] == {
        "external": True,
        "target_port": 8000,
        "transport": "auto",
        "sticky_sessions": {"affinity": "sticky"},
    }
    assert app["scale"] == {"min_replicas": 1, "max_replicas": 1}


def test_container_app_reads_key_through_vault_reference(applied):
    app = applied.resources[cw.CONTAINER_APPS_APP].properties
    identity_id = applied.node_outputs[cw.MANAGED_IDENTITY]["id"]
    vault_name = applied.node_outputs[cw.KEY_VAULT]["name"]

    assert app["secrets"] == [
        {
            "name": constants.COSMOS_KEY_SECRET_NAME,
            "key_vault_url": f"https://{vault_name}.vault.azure.net/secrets/{constants.COSMOS_KEY_SECRET_NAME}",
            "identity": identity_id,
        }
    ]
    env = {item["name"]: item for item in app["containers"][0]["env"]}
    assert env[constants.OUTPUT_KEY] == {
        "name": constants.OUTPUT_KEY,
        "secret_ref": constants.COSMOS_KEY_SECRET_NAME,
    }
    assert env[constants.OUTPUT_TABLE_NAME]["value"] == "cosmicworks-products"
    assert app["registries"] == [
        {"server": applied.outputs[constants.OUTPUT_REGISTRY_ENDPOINT], "identity": identity_id}
    ]


ROLE_ASSIGNMENT_CASES = (
    RoleAssignmentTestCase(
        id="vault_secrets_user",
        node=cw.VAULT_SECRETS_USER_ROLE,
        role_id="4633458b-17de-408a-b874-0445c86b69e6",
        principal_type="ServicePrincipal",
        scope_node=cw.KEY_VAULT,
    ),
)


@pytest.mark.parametrize("case", ROLE_ASSIGNMENT_CASES, ids=lambda test: test.id)
def test_role_assignment_properties(applied, case: RoleAssignmentTestCase):
    grant = applied.resources[case.node]
    assert re.fullmatch(r"[0-9a-f]{8}(-[0-9a-f]{4}){3}-[0-9a-f]{12}", grant.name)
    assert grant.properties["role_definition_id"].endswith(f"/roleDefinitions/{case.role_id}")
    assert grant.properties["principal_type"] == case.principal_type
    assert grant.properties["scope"] == applied.node_outputs[case.scope_node]["id"]
    assert grant.properties["principal_id"] == applied.node_outputs[cw.MANAGED_IDENTITY]["principal_id"]


def test_registry_push_role_uses_acr_push(template_with_principal: cw.CosmicWorksAppTemplate):
    node = template_with_principal.plan().nodes[cw.REGISTRY_PUSH_ROLE]
    assert node.params["role_id"] == "8311e382-0749-4cb8-b61a-304f252e45ec"
    assert node.params["principal_type"] == "User"


# ----------------------------- Governance tests ------------------------


def test_plan_never_inlines_the_key(template: cw.CosmicWorksAppTemplate):
    control_plane = InMemoryControlPlane(template.context)
    result = template.apply(control_plane, fast_settings())
    assert_no_plaintext_secrets(template.plan().to_dict(), [result.outputs[constants.OUTPUT_KEY]])
    rendered_app = repr(dict(result.resources[cw.CONTAINER_APPS_APP].properties))
    assert result.outputs[constants.OUTPUT_KEY] not in rendered_app


def test_resources_are_tagged(applied):
    assert_tag_compliance(applied.resources.values(), env="dev")


def test_web_app_extends_tags_without_mutating_the_base(
    template: cw.CosmicWorksAppTemplate, applied
):
    app_tags = applied.resources[cw.CONTAINER_APPS_APP].tags
    assert app_tags[constants.TAG_SERVICE_NAME] == "web"
    assert constants.TAG_SERVICE_NAME not in template.context.tags
    assert constants.TAG_SERVICE_NAME not in applied.resources[cw.KEY_VAULT].tags


# ----------------------------- Parameter tests ------------------------

INVALID_PARAMETERS = [
    pytest.param({"environment_name": ""}, id="empty-environment"),
    pytest.param({"environment_name": "e" * 65}, id="long-environment"),
    pytest.param({"location": ""}, id="empty-location"),
]


@pytest.mark.parametrize("overrides", INVALID_PARAMETERS)
def test_invalid_parameters_are_rejected(overrides: dict):
    with pytest.raises(ValueError):
        build_parameters(**overrides)


def test_parameters_default_service_name_and_principal():
    parameters = TemplateParameters(
        environment_name="dev", location="eastus", scope_id=TEST_SCOPE_ID
    )
    assert parameters.service_name == "web"
    assert parameters.principal_id == ""


def test_parameters_are_read_from_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AZURE_ENV_NAME", "dev")
    monkeypatch.setenv("AZURE_LOCATION", "eastus")
    monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", TEST_SCOPE_ID)
    monkeypatch.setenv("AZURE_PRINCIPAL_ID", TEST_PRINCIPAL_ID)
    monkeypatch.delenv("AZURE_SERVICE_NAME", raising=False)

    assert TemplateParameters.from_env() == build_parameters(principal_id=TEST_PRINCIPAL_ID)
