import os
from typing import Any

from attrs import asdict, define, field
from attrs.validators import instance_of, max_len, min_len

import common.constants as constants


@define(slots=True, frozen=True, kw_only=True)
class TemplateParameters:
    environment_name: str = field(
        validator=[instance_of(str), min_len(1), max_len(64)],
        metadata={"description": "Name of the environment, used to derive resource names"},
    )
    location: str = field(
        validator=[instance_of(str), min_len(1)],
        metadata={"description": "Primary region for all resources"},
    )
    scope_id: str = field(
        validator=[instance_of(str), min_len(1)],
        metadata={"description": "Subscription id, part of the resource token"},
    )
    principal_id: str = field(
        default="",
        validator=instance_of(str),
        metadata={"description": "Deploying principal; empty skips its registry push grant"},
    )
    service_name: str = field(
        default=constants.DEFAULT_SERVICE_NAME,
        validator=[instance_of(str), min_len(1)],
        metadata={"description": "Service name tag of the web app"},
    )

    @classmethod
    def from_env(cls) -> "TemplateParameters":
        return cls(
            environment_name=os.getenv("AZURE_ENV_NAME", ""),
            location=os.getenv("AZURE_LOCATION", ""),
            scope_id=os.getenv("AZURE_SUBSCRIPTION_ID", ""),
            principal_id=os.getenv("AZURE_PRINCIPAL_ID", ""),
            service_name=os.getenv("AZURE_SERVICE_NAME", constants.DEFAULT_SERVICE_NAME),
        )

    def to_mapping(self) -> dict[str, Any]:
        return asdict(self)
