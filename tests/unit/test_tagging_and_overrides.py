import aws_cdk as cdk
import pytest
from aws_cdk import assertions
from aws_cdk import aws_s3 as s3

from cms_infra.exceptions.config_exceptions import UnknownOverrideTargetError
from cms_infra.overrides import apply_overrides, cfn_resources_by_logical_id
from cms_infra.tagging import STANDARD_TAGS, apply_standard_tags


def make_stack():
    app = cdk.App()
    stack = cdk.Stack(app, "TestStack")
    bucket = s3.Bucket(stack, "Bucket")
    return stack, bucket


def logical_id(stack, construct):
    return stack.resolve(stack.get_logical_id(construct.node.default_child))


class TestStandardTags:
    def test_returns_the_scope(self):
        stack, _ = make_stack()
        assert apply_standard_tags(stack) is stack

    def test_every_tag_reaches_resources(self):
        stack, _ = make_stack()
        apply_standard_tags(stack)
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties(
            "AWS::S3::Bucket",
            {
                "Tags": assertions.Match.array_with(
                    [{"Key": key, "Value": value} for key, value in sorted(STANDARD_TAGS.items())]
                )
            },
        )

    def test_six_tags(self):
        assert set(STANDARD_TAGS) == {
            "Application",
            "BusinessUnit",
            "Description",
            "TechnicalOwner",
            "ManagedBy",
            "Tier",
        }


class TestOverrides:
    def test_patch_lands_on_named_resource(self):
        stack, bucket = make_stack()
        apply_overrides(
            stack,
            {logical_id(stack, bucket): {"VersioningConfiguration.Status": "Enabled"}},
        )
        template = assertions.Template.from_stack(stack)

        template.has_resource_properties(
            "AWS::S3::Bucket", {"VersioningConfiguration": {"Status": "Enabled"}}
        )

    def test_unknown_logical_id_fails(self):
        stack, _ = make_stack()
        with pytest.raises(UnknownOverrideTargetError) as exc_info:
            apply_overrides(stack, {"DoesNotExist": {"Foo": "bar"}})
        assert "DoesNotExist" in exc_info.value.message

    def test_no_overrides_is_a_no_op(self):
        stack, _ = make_stack()
        assert apply_overrides(stack, {}) is stack

    def test_nested_stack_resources_are_not_targets(self):
        stack, bucket = make_stack()
        nested = cdk.NestedStack(stack, "Nested")
        inner = s3.Bucket(nested, "InnerBucket")

        resources = cfn_resources_by_logical_id(stack)

        assert logical_id(stack, bucket) in resources
        assert nested.resolve(nested.get_logical_id(inner.node.default_child)) not in resources
