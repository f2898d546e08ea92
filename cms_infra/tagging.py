from typing import Dict, TypeVar

from aws_cdk import Tags
from constructs import IConstruct

STANDARD_TAGS: Dict[str, str] = {
    "Application": "payloadcms-next-cdk",
    "BusinessUnit": "DevOps",
    "Description": "This repo contains infrastructure code for the CMS.",
    "TechnicalOwner": "norman@khine.net",
    "ManagedBy": "Infra",
    "Tier": "CMS",
}

ScopeT = TypeVar("ScopeT", bound=IConstruct)


def apply_standard_tags(scope: ScopeT) -> ScopeT:
    """Tag ``scope`` and everything below it; returns ``scope`` for chaining."""
    tags = Tags.of(scope)
    for key, value in STANDARD_TAGS.items():
        tags.add(key, value)
    return scope
