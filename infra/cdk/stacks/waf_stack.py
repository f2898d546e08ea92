from typing import List, Optional, Sequence

from aws_cdk import Stack
from aws_cdk import aws_wafv2 as wafv2
from constructs import Construct

from cms_infra.schemas.config import WafConfig
from cms_infra.waf.rules import (
    AdminPathRule,
    GeoBlockRule,
    ManagedRuleGroupRule,
    Rule,
    build_rules,
)


def visibility(metric_name: str, enabled: bool = True) -> wafv2.CfnWebACL.VisibilityConfigProperty:
    return wafv2.CfnWebACL.VisibilityConfigProperty(
        cloud_watch_metrics_enabled=enabled,
        metric_name=metric_name,
        sampled_requests_enabled=enabled,
    )


def render_rule(rule: Rule, ip_set_arn: Optional[str] = None) -> wafv2.CfnWebACL.RuleProperty:
    if isinstance(rule, ManagedRuleGroupRule):
        return wafv2.CfnWebACL.RuleProperty(
            name=rule.name,
            priority=rule.priority,
            statement=wafv2.CfnWebACL.StatementProperty(
                managed_rule_group_statement=wafv2.CfnWebACL.ManagedRuleGroupStatementProperty(
                    name=rule.group_name,
                    vendor_name=rule.vendor_name,
                    excluded_rules=[
                        wafv2.CfnWebACL.ExcludedRuleProperty(name=name)
                        for name in rule.excluded_rules
                    ],
                )
            ),
            override_action=wafv2.CfnWebACL.OverrideActionProperty(none={}),
            visibility_config=visibility(rule.metric_name),
        )

    if isinstance(rule, GeoBlockRule):
        return wafv2.CfnWebACL.RuleProperty(
            name=rule.name,
            priority=rule.priority,
            statement=wafv2.CfnWebACL.StatementProperty(
                geo_match_statement=wafv2.CfnWebACL.GeoMatchStatementProperty(
                    country_codes=list(rule.country_codes),
                )
            ),
            action=wafv2.CfnWebACL.RuleActionProperty(block={}),
            visibility_config=visibility(rule.metric_name),
        )

    if isinstance(rule, AdminPathRule):
        if ip_set_arn is None:
            raise ValueError(f"{rule.name} needs the ARN of the allowed IP set")
        return wafv2.CfnWebACL.RuleProperty(
            name=rule.name,
            priority=rule.priority,
            statement=wafv2.CfnWebACL.StatementProperty(
                and_statement=wafv2.CfnWebACL.AndStatementProperty(
                    statements=[
                        wafv2.CfnWebACL.StatementProperty(
                            byte_match_statement=wafv2.CfnWebACL.ByteMatchStatementProperty(
                                field_to_match=wafv2.CfnWebACL.FieldToMatchProperty(
                                    uri_path={}
                                ),
                                positional_constraint="STARTS_WITH",
                                search_string=rule.path_prefix,
                                text_transformations=[
                                    wafv2.CfnWebACL.TextTransformationProperty(
                                        priority=0, type="NONE"
                                    )
                                ],
                            )
                        ),
                        wafv2.CfnWebACL.StatementProperty(
                            not_statement=wafv2.CfnWebACL.NotStatementProperty(
                                statement=wafv2.CfnWebACL.StatementProperty(
                                    ip_set_reference_statement=wafv2.CfnWebACL.IPSetReferenceStatementProperty(
                                        arn=ip_set_arn
                                    )
                                )
                            )
                        ),
                    ]
                )
            ),
            action=wafv2.CfnWebACL.RuleActionProperty(block={}),
            visibility_config=visibility(rule.metric_name, enabled=False),
        )

    raise TypeError(f"unsupported WAF rule {rule!r}")


class WafStack(Stack):
    """Regional web ACL associated with the environment's ALB."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        load_balancer_arn: str,
        waf: WafConfig,
        allowed_ipv4: Sequence[str] = (),
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.rules = build_rules(waf, allowed_ipv4)

        ip_set_arn = None
        if any(isinstance(rule, AdminPathRule) for rule in self.rules):
            ip_set = wafv2.CfnIPSet(
                self,
                "AdminAllowedIPSet",
                name="AdminAccessAllowed",
                ip_address_version="IPV4",
                description="Addresses that are allowed to /admin",
                addresses=list(allowed_ipv4),
                scope="REGIONAL",
            )
            ip_set_arn = ip_set.attr_arn

        rendered: List[wafv2.CfnWebACL.RuleProperty] = [
            render_rule(rule, ip_set_arn) for rule in self.rules
        ]

        self.web_acl = wafv2.CfnWebACL(
            self,
            "WebACL",
            default_action=wafv2.CfnWebACL.DefaultActionProperty(allow={}),
            scope="REGIONAL",
            visibility_config=visibility("webACL"),
            rules=rendered,
        )

        wafv2.CfnWebACLAssociation(
            self,
            "WebACLAssociation",
            web_acl_arn=self.web_acl.attr_arn,
            resource_arn=load_balancer_arn,
        )
