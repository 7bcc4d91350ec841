import uuid
from types import MappingProxyType
from typing import Mapping

from attrs import define, field
from attrs.validators import instance_of, min_len

import common.constants as constants
from provisioning.token import generate_token


def _read_only(tags: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType({str(key): str(value) for key, value in tags.items()})


@define(slots=True, frozen=True)
class TagSet:
    """Read-only tag mapping shared by every resource in a plan."""

    items: Mapping[str, str] = field(factory=dict, converter=_read_only)

    def extend(self, extra: Mapping[str, str]) -> "TagSet":
        return TagSet({**self.items, **extra})

    def to_dict(self) -> dict[str, str]:
        return dict(self.items)

    def __getitem__(self, key: str) -> str:
        return self.items[key]

    def __contains__(self, key: object) -> bool:
        return key in self.items

    def __len__(self) -> int:
        return len(self.items)


@define(slots=True, frozen=True)
class PlanContext:
    scope_id: str = field(
        validator=[instance_of(str), min_len(1)],
        metadata={"description": "Subscription the template is deployed into"},
    )
    env: str = field(
        validator=[instance_of(str), min_len(1)],
        metadata={"description": "Deployment environment name (dev, staging, prod)"},
    )
    location: str = field(validator=[instance_of(str), min_len(1)])
    resource_token: str = field(init=False)
    tags: TagSet = field(init=False)

    def __attrs_post_init__(self) -> None:
        object.__setattr__(
            self,
            "resource_token",
            generate_token(self.scope_id, self.env, self.location),
        )
        object.__setattr__(
            self,
            "tags",
            TagSet(
                {
                    constants.TAG_ENV_NAME: self.env,
                    constants.TAG_REPO: constants.SOURCE_REPOSITORY,
                }
            ),
        )

    @property
    def resource_group_name(self) -> str:
        return f"rg-{self.env}"

    # ---------- naming ----------
    def build_resource_name(self, resource_type: str) -> str:
        """Build a resource name from its type prefix and the resource token.

        Examples:
            - KeyVault: kv-<token>
            - ContainerRegistry: containerreg<token>
        """
        try:
            prefix = constants.RESOURCE_PREFIXES[resource_type]
        except KeyError:
            raise ValueError(f"No naming prefix defined for '{resource_type}'") from None
        if resource_type in constants.ALPHANUMERIC_RESOURCES:
            return f"{prefix}{self.resource_token}".lower()
        return f"{prefix}-{self.resource_token}".lower()

    def build_resource_id(self, resource_type: str, name: str) -> str:
        return (
            f"/subscriptions/{self.scope_id}"
            f"/resourceGroups/{self.resource_group_name}"
            f"/providers/{resource_type}/{name}"
        )

    def build_role_definition_id(self, role_id: str) -> str:
        return constants.ROLE_DEFINITION_ID.format(scope_id=self.scope_id, role_id=role_id)

    def build_role_assignment_name(
        self, scope: str, principal_id: str, role_id: str
    ) -> str:
        # Role assignment names must be GUIDs; derive one so re-applies upsert
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{scope}|{principal_id}|{role_id}"))
