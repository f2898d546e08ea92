"""Rule set of the regional web ACL in front of each environment's ALB.

The rules here are plain descriptors; the WAF stack renders them into
``CfnWebACL.RuleProperty`` objects. ``evaluate`` mirrors how WAF walks them
(ascending priority, first terminating match wins, otherwise the default
action) so the rule set can be reasoned about without a deployed ACL.
"""

import dataclasses
import ipaddress
from enum import Enum
from typing import FrozenSet, List, Optional, Sequence, Tuple, Union

from cms_infra.schemas.config import WafConfig


class Action(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"


@dataclasses.dataclass(frozen=True)
class WebRequest:
    country: str
    path: str = "/"
    source_ip: str = "198.51.100.1"
    # Managed rule findings as "Group" or "Group/RuleName"
    managed_matches: FrozenSet[str] = frozenset()


@dataclasses.dataclass(frozen=True)
class ManagedRuleGroupRule:
    name: str
    priority: int
    group_name: str
    metric_name: str
    vendor_name: str = "AWS"
    excluded_rules: Tuple[str, ...] = ()

    action = Action.BLOCK

    def matches(self, request: WebRequest) -> bool:
        for finding in request.managed_matches:
            group, _, rule = finding.partition("/")
            if group == self.group_name and rule not in self.excluded_rules:
                return True
        return False


@dataclasses.dataclass(frozen=True)
class GeoBlockRule:
    name: str
    priority: int
    country_codes: Tuple[str, ...]
    metric_name: str

    action = Action.BLOCK

    def matches(self, request: WebRequest) -> bool:
        return request.country.upper() in self.country_codes


@dataclasses.dataclass(frozen=True)
class AdminPathRule:
    """Block ``path_prefix`` for every address outside ``allowed_cidrs``."""

    name: str
    priority: int
    allowed_cidrs: Tuple[str, ...]
    metric_name: str
    path_prefix: str = "/admin"

    action = Action.BLOCK

    def matches(self, request: WebRequest) -> bool:
        if not request.path.startswith(self.path_prefix):
            return False
        address = ipaddress.ip_address(request.source_ip)
        return not any(
            address in ipaddress.ip_network(cidr, strict=False)
            for cidr in self.allowed_cidrs
        )


Rule = Union[ManagedRuleGroupRule, GeoBlockRule, AdminPathRule]

COMMON_RULE_SET_EXCLUSIONS = (
    "SizeRestrictions_BODY",
    "SizeRestrictions_QUERYSTRING",
    "GenericLFI_QUERYARGUMENTS",
    "GenericLFI_URIPATH",
    "CrossSiteScripting_BODY",
)


def build_rules(waf: WafConfig, allowed_ipv4: Sequence[str] = ()) -> List[Rule]:
    rules: List[Rule] = [
        ManagedRuleGroupRule(
            name="AWS-AWSManagedRulesCommonRuleSet",
            priority=100,
            group_name="AWSManagedRulesCommonRuleSet",
            metric_name="awsCommonRules",
            excluded_rules=COMMON_RULE_SET_EXCLUSIONS,
        ),
        ManagedRuleGroupRule(
            name="awsIPReputation",
            priority=3,
            group_name="AWSManagedRulesAmazonIpReputationList",
            metric_name="awsReputation",
        ),
        GeoBlockRule(
            name="geoblockRule",
            priority=4,
            country_codes=tuple(waf.blocked_countries),
            metric_name="geoBlock",
        ),
    ]
    if waf.restrict_admin_paths:
        rules.append(
            AdminPathRule(
                name="BlockAdminAccess",
                priority=0,
                allowed_cidrs=tuple(allowed_ipv4),
                metric_name="BlockedAdminAccess",
            )
        )
    return sorted(rules, key=lambda rule: rule.priority)


def evaluate(
    rules: Sequence[Rule],
    request: WebRequest,
    default_action: Action = Action.ALLOW,
) -> Tuple[Action, Optional[str]]:
    """Return the action taken and the name of the rule that decided it."""
    priorities = [rule.priority for rule in rules]
    if len(set(priorities)) != len(priorities):
        raise ValueError("rule priorities must be unique within a web ACL")

    for rule in sorted(rules, key=lambda r: r.priority):
        if rule.matches(request):
            return rule.action, rule.name
    return default_action, None
