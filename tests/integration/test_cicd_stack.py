import aws_cdk as cdk
import pytest
from aws_cdk import assertions
from stacks.cicd_stack import (
    CicdStack,
    synth_commands,
    synth_output_directory,
    trigger_file_paths,
)

from cms_infra.schemas.config import RepoEntry
from cms_infra.services.config_loader import parse_config


@pytest.fixture
def cicd_template(config_document):
    app = cdk.App()
    stack = CicdStack(
        app,
        "PAYLOADCMS-CICD-STACK",
        document=config_document,
        env=cdk.Environment(account="111111111111", region="eu-west-1"),
    )
    return stack, assertions.Template.from_stack(stack)


@pytest.fixture
def path_filtered_template(config_payload):
    config_payload["cicd"]["repo"]["path"] = "infra"
    app = cdk.App()
    stack = CicdStack(
        app,
        "PAYLOADCMS-CICD-STACK",
        document=parse_config(config_payload),
        env=cdk.Environment(account="111111111111", region="eu-west-1"),
    )
    return assertions.Template.from_stack(stack)


def stages_by_name(template):
    (pipeline,) = template.find_resources("AWS::CodePipeline::Pipeline").values()
    return {stage["Name"]: stage for stage in pipeline["Properties"]["Stages"]}, [
        stage["Name"] for stage in pipeline["Properties"]["Stages"]
    ]


class TestSynthCommands:
    def test_repository_root(self):
        repo = RepoEntry(owner="nkhine", repo="infra")
        assert synth_commands(repo) == ["pip install -e .", "cdk synth"]
        assert synth_output_directory(repo) == "cdk.out"

    def test_repository_sub_path(self):
        repo = RepoEntry(owner="nkhine", repo="infra", path="cdk")
        assert synth_commands(repo)[0] == "cd ./cdk"
        assert synth_output_directory(repo) == "./cdk/cdk.out"

    def test_trigger_paths_follow_sub_path(self):
        assert trigger_file_paths(RepoEntry(owner="nkhine", repo="infra", path="cdk")) == ["cdk/**"]
        assert trigger_file_paths(RepoEntry(owner="nkhine", repo="infra")) == []


class TestCicdStack:
    def test_environments_promoted_in_order(self, cicd_template):
        _, template = cicd_template
        _, names = stages_by_name(template)

        assert names.index("Dev") < names.index("QA") < names.index("Prod")

    def test_dev_is_not_gated(self, cicd_template):
        _, template = cicd_template
        stages, _ = stages_by_name(template)

        categories = {a["ActionTypeId"]["Category"] for a in stages["Dev"]["Actions"]}
        assert "Approval" not in categories

    @pytest.mark.parametrize(
        "stage_name, approval_name",
        [("QA", "ApproveQA"), ("Prod", "ApproveProd")],
    )
    def test_approval_runs_before_any_deployment(self, cicd_template, stage_name, approval_name):
        _, template = cicd_template
        stages, _ = stages_by_name(template)
        actions = stages[stage_name]["Actions"]

        (approval,) = [a for a in actions if a["ActionTypeId"]["Category"] == "Approval"]
        others = [a for a in actions if a is not approval]

        assert approval["Name"] == approval_name
        assert others
        assert all(a["RunOrder"] > approval["RunOrder"] for a in others)

    def test_approval_comment_names_the_account(self, cicd_template):
        _, template = cicd_template
        stages, _ = stages_by_name(template)
        (approval,) = [
            a for a in stages["Prod"]["Actions"] if a["ActionTypeId"]["Category"] == "Approval"
        ]

        assert approval["Configuration"]["CustomData"] == (
            "Approve deployment of Website to the Production account"
        )

    def test_pipeline_named_from_config(self, cicd_template):
        _, template = cicd_template
        template.has_resource_properties(
            "AWS::CodePipeline::Pipeline", {"Name": "payloadcms-infra"}
        )

    def test_stages_exposed_by_environment(self, cicd_template):
        stack, _ = cicd_template
        assert list(stack.stages) == ["dev", "qa", "prod"]
        assert stack.stages["qa"].cms_stack.region == "eu-west-1"

    def test_v2_pipeline_without_path_filter(self, cicd_template):
        _, template = cicd_template
        (pipeline,) = template.find_resources("AWS::CodePipeline::Pipeline").values()

        assert pipeline["Properties"]["PipelineType"] == "V2"
        assert not pipeline["Properties"].get("Triggers")


class TestPathFilteredTrigger:
    def test_only_pushes_under_repo_path_start_the_pipeline(self, path_filtered_template):
        (pipeline,) = path_filtered_template.find_resources(
            "AWS::CodePipeline::Pipeline"
        ).values()
        (trigger,) = pipeline["Properties"]["Triggers"]
        source_actions = pipeline["Properties"]["Stages"][0]["Actions"]

        assert pipeline["Properties"]["PipelineType"] == "V2"
        assert trigger["ProviderType"] == "CodeStarSourceConnection"
        assert trigger["GitConfiguration"]["SourceActionName"] == source_actions[0]["Name"]
        assert trigger["GitConfiguration"]["Push"] == [
            {"Branches": {"Includes": ["main"]}, "FilePaths": {"Includes": ["infra/**"]}}
        ]
