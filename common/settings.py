import os

from attrs import define, field
from attrs.validators import ge, gt, in_, instance_of

import common.constants as constants

TRUTHY = {"1", "true", "yes", "on"}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@define(slots=True, frozen=True)
class EvaluatorSettings:
    max_workers: int = field(
        default=constants.DEFAULT_MAX_WORKERS,
        validator=[instance_of(int), ge(1)],
        metadata={"description": "Size of the apply worker pool"},
    )
    consistency_timeout_seconds: float = field(
        default=constants.DEFAULT_CONSISTENCY_TIMEOUT_SECONDS,
        converter=float,
        validator=ge(0),
    )
    consistency_poll_seconds: float = field(
        default=constants.DEFAULT_CONSISTENCY_POLL_SECONDS,
        converter=float,
        validator=gt(0),
    )
    plan_only: bool = field(default=False)
    log_level: str = field(default="INFO", converter=str.upper, validator=in_(LOG_LEVELS))

    @classmethod
    def from_env(cls) -> "EvaluatorSettings":
        return cls(
            max_workers=int(
                os.getenv("PROVISIONER_MAX_WORKERS", constants.DEFAULT_MAX_WORKERS)
            ),
            consistency_timeout_seconds=os.getenv(
                "PROVISIONER_CONSISTENCY_TIMEOUT",
                constants.DEFAULT_CONSISTENCY_TIMEOUT_SECONDS,
            ),
            consistency_poll_seconds=os.getenv(
                "PROVISIONER_CONSISTENCY_POLL",
                constants.DEFAULT_CONSISTENCY_POLL_SECONDS,
            ),
            plan_only=os.getenv("PROVISIONER_PLAN_ONLY", "false").lower() in TRUTHY,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
