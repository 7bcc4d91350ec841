#!/usr/bin/env python3
"""Entrypoint for provisioning the CosmicWorks infrastructure.

Template parameters are read from the azd-style environment variables
(AZURE_ENV_NAME, AZURE_LOCATION, AZURE_SUBSCRIPTION_ID, AZURE_PRINCIPAL_ID,
AZURE_SERVICE_NAME). The plan is applied against the in-memory control plane
and the template outputs are printed as JSON, ready to be exported as the
application's environment variables. Set PROVISIONER_PLAN_ONLY=true to print
the plan instead.
"""
import json
import sys

from aws_lambda_powertools import Logger

import common.constants as constants
from common.settings import EvaluatorSettings
from cosmicworks_app.cosmicworks_app_template import CosmicWorksAppTemplate
from cosmicworks_app.parameters import TemplateParameters
from provisioning.control_plane import InMemoryControlPlane
from provisioning.errors import ProvisioningPlanError


def main() -> int:
    # stdout carries the JSON document
    logger = Logger(service=constants.LOGGER_SERVICE, stream=sys.stderr)

    try:
        settings = EvaluatorSettings.from_env()
    except ValueError as e:
        logger.error("Invalid evaluator settings", error=str(e))
        return 2
    logger.setLevel(settings.log_level)

    try:
        parameters = TemplateParameters.from_env()
    except ValueError as e:
        logger.error("Invalid template parameters", error=str(e))
        return 2

    template = CosmicWorksAppTemplate(parameters)
    try:
        if settings.plan_only:
            print(json.dumps(template.plan().to_dict(), indent=2))
            return 0
        result = template.apply(InMemoryControlPlane(template.context), settings)
    except ProvisioningPlanError:
        logger.exception("Provisioning failed")
        return 1

    print(json.dumps(dict(result.outputs), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
