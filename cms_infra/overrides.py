"""Raw CloudFormation property patches for resources the constructs don't expose.

Overrides come from config.yml, keyed by stack id and then by the logical id
of the resource inside that stack::

    overrides:
      CmsStack:
        DbClusterSecurityGroup1A2B3C4D:
          SecurityGroupEgress.0.Description: egress
"""

from typing import Any, Dict, Mapping

from aws_cdk import CfnResource, Stack

from cms_infra.exceptions.config_exceptions import UnknownOverrideTargetError
from cms_infra.logging_config import get_logger

logger = get_logger(__name__)


def cfn_resources_by_logical_id(stack: Stack) -> Dict[str, CfnResource]:
    """L1 resources that belong to ``stack`` itself, nested stacks excluded."""
    resources = {}
    for construct in stack.node.find_all():
        if not isinstance(construct, CfnResource):
            continue
        if Stack.of(construct).node.path != stack.node.path:
            continue
        resources[stack.resolve(construct.logical_id)] = construct
    return resources


def apply_overrides(stack: Stack, overrides: Mapping[str, Mapping[str, Any]]) -> Stack:
    if not overrides:
        return stack

    resources = cfn_resources_by_logical_id(stack)
    for logical_id, patch in overrides.items():
        resource = resources.get(logical_id)
        if resource is None:
            raise UnknownOverrideTargetError(
                f"Stack {stack.node.path} has no resource with logical id {logical_id!r}"
            )
        for property_path, value in patch.items():
            resource.add_property_override(property_path, value)
            logger.info(
                "property_override_applied",
                stack=stack.node.path,
                logical_id=logical_id,
                property_path=property_path,
            )
    return stack
