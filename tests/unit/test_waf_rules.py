import pytest

from cms_infra.schemas.config import WafConfig
from cms_infra.waf.rules import (
    COMMON_RULE_SET_EXCLUSIONS,
    Action,
    GeoBlockRule,
    WebRequest,
    build_rules,
    evaluate,
)


@pytest.fixture
def rules():
    return build_rules(WafConfig())


@pytest.fixture
def admin_rules():
    return build_rules(WafConfig(restrict_admin_paths=True), ["203.0.113.0/24"])


class TestBuildRules:
    def test_default_rule_set_in_priority_order(self, rules):
        assert [(r.name, r.priority) for r in rules] == [
            ("awsIPReputation", 3),
            ("geoblockRule", 4),
            ("AWS-AWSManagedRulesCommonRuleSet", 100),
        ]

    def test_common_rule_set_excludes_five_rules(self, rules):
        common = rules[-1]
        assert common.group_name == "AWSManagedRulesCommonRuleSet"
        assert common.excluded_rules == COMMON_RULE_SET_EXCLUSIONS
        assert len(common.excluded_rules) == 5

    def test_geoblock_uses_configured_countries(self):
        rules = build_rules(WafConfig(blocked_countries=["ru"]))
        geo = next(r for r in rules if isinstance(r, GeoBlockRule))
        assert geo.country_codes == ("RU",)

    def test_admin_rule_comes_first_when_enabled(self, admin_rules):
        assert admin_rules[0].name == "BlockAdminAccess"
        assert admin_rules[0].priority == 0
        assert len(admin_rules) == 4


class TestEvaluate:
    def test_geo_blocked_request_denied(self, rules):
        assert evaluate(rules, WebRequest(country="NZ")) == (Action.BLOCK, "geoblockRule")

    def test_unmatched_request_allowed(self, rules):
        assert evaluate(rules, WebRequest(country="GB")) == (Action.ALLOW, None)

    def test_lower_priority_number_decides_first(self, rules):
        request = WebRequest(
            country="US",
            managed_matches=frozenset({"AWSManagedRulesAmazonIpReputationList"}),
        )
        assert evaluate(rules, request) == (Action.BLOCK, "awsIPReputation")

    def test_excluded_common_rule_does_not_block(self, rules):
        request = WebRequest(
            country="GB",
            managed_matches=frozenset({"AWSManagedRulesCommonRuleSet/SizeRestrictions_BODY"}),
        )
        assert evaluate(rules, request) == (Action.ALLOW, None)

    def test_other_common_rule_blocks(self, rules):
        request = WebRequest(
            country="GB",
            managed_matches=frozenset({"AWSManagedRulesCommonRuleSet/NoUserAgent_HEADER"}),
        )
        assert evaluate(rules, request) == (
            Action.BLOCK,
            "AWS-AWSManagedRulesCommonRuleSet",
        )

    def test_admin_path_blocked_outside_allowed_set(self, admin_rules):
        request = WebRequest(country="GB", path="/admin/login", source_ip="198.51.100.7")
        assert evaluate(admin_rules, request) == (Action.BLOCK, "BlockAdminAccess")

    def test_admin_path_allowed_from_allowed_set(self, admin_rules):
        request = WebRequest(country="GB", path="/admin", source_ip="203.0.113.9")
        assert evaluate(admin_rules, request) == (Action.ALLOW, None)

    def test_admin_rule_wins_over_geoblock(self, admin_rules):
        request = WebRequest(country="NZ", path="/admin", source_ip="198.51.100.7")
        assert evaluate(admin_rules, request)[1] == "BlockAdminAccess"

    def test_default_action_is_configurable(self, rules):
        request = WebRequest(country="GB")
        assert evaluate(rules, request, default_action=Action.BLOCK) == (Action.BLOCK, None)

    def test_duplicate_priorities_rejected(self, rules):
        duplicate = GeoBlockRule(
            name="second", priority=4, country_codes=("FR",), metric_name="second"
        )
        with pytest.raises(ValueError):
            evaluate(rules + [duplicate], WebRequest(country="FR"))
