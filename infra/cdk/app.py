#!/usr/bin/env python3
"""
CDK app entry point.

Usage
-----
Install the project (from the repository root) first:
    pip install -e .

Bootstrap every account the pipeline deploys into, trusting the CI/CD account:
    cdk bootstrap aws://<CICD_ACCOUNT_ID>/<REGION>
    cdk bootstrap aws://<ENV_ACCOUNT_ID>/<REGION> \
        --trust <CICD_ACCOUNT_ID> \
        --cloudformation-execution-policies arn:aws:iam::aws:policy/AdministratorAccess

Deploy the pipeline once; after that it updates itself on every push:
    cdk deploy PAYLOADCMS-CICD-STACK

The environments, tenant apps and accounts are read from config.yml (or the
file named by CONFIG_FILE).
"""

import aws_cdk as cdk
from stacks.cicd_stack import CicdStack, cdk_environment

from cms_infra.config import settings
from cms_infra.logging_config import configure_logging, get_logger
from cms_infra.services.config_loader import load_config

configure_logging(config_file=settings.config_file)
logger = get_logger(__name__)

document = load_config()
app = cdk.App()

CicdStack(
    app,
    settings.cicd_stack_name,
    document=document,
    env=cdk_environment(document.cicd.env),
)

logger.info("cdk_app_synthesizing", stack=settings.cicd_stack_name)
app.synth()
