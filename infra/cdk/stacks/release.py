"""Pieces shared by the CMS service pipeline and the tenant app pipelines."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Dict, List, Optional

from aws_cdk import RemovalPolicy, Stack
from aws_cdk import aws_codebuild as codebuild
from aws_cdk import aws_codepipeline as codepipeline
from aws_cdk import aws_codepipeline_actions as codepipeline_actions
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_ecr as ecr
from aws_cdk import aws_ecr_assets as ecr_assets
from aws_cdk import aws_iam as iam
from aws_cdk import aws_s3 as s3
from aws_cdk import aws_ssm as ssm
from constructs import Construct

import cms_infra.lambdas.updater
from cms_infra.promotion import (
    APPROVAL_STAGE,
    BUILD_STAGE,
    DEPLOY_STAGE,
    SOURCE_STAGE,
    pipeline_stage_names,
)
from cms_infra.release.buildspec import ImageBuild, render_buildspec
from cms_infra.release.parameters import (
    PACKAGE_VERSION_PLACEHOLDER,
    ReleaseParameterNames,
)
from cms_infra.schemas.config import RepoEntry

PLACEHOLDER_IMAGE_DIR = Path(__file__).resolve().parents[1] / "assets" / "placeholder"
LAMBDA_CODE_DIR = Path(cms_infra.lambdas.updater.__file__).resolve().parent

ECR_PUSH_ACTIONS = [
    "ecr:PutImage",
    "ecr:InitiateLayerUpload",
    "ecr:UploadLayerPart",
    "ecr:CompleteLayerUpload",
]
ECR_PULL_ACTIONS = [
    "ecr:BatchCheckLayerAvailability",
    "ecr:GetDownloadUrlForLayer",
    "ecr:BatchGetImage",
]
SSM_READ_ACTIONS = [
    "ssm:GetParameters",
    "ssm:GetParameter",
    "ssm:GetParameterHistory",
]


@dataclasses.dataclass
class ReleaseParameters:
    names: ReleaseParameterNames
    repository_arn: ssm.StringParameter
    repository_name: ssm.StringParameter
    release_tag: ssm.StringParameter
    package_version: ssm.StringParameter

    def all(self) -> List[ssm.StringParameter]:
        return [
            self.repository_arn,
            self.repository_name,
            self.release_tag,
            self.package_version,
        ]

    def parameter_arns(self) -> List[str]:
        return [parameter.parameter_arn for parameter in self.all()]

    def image_repository(self, scope: Construct, construct_id: str) -> ecr.IRepository:
        """The repository the current release lives in, resolved at deploy time."""
        return ecr.Repository.from_repository_attributes(
            scope,
            construct_id,
            repository_arn=self.repository_arn.string_value,
            repository_name=self.repository_name.string_value,
        )


def create_release_parameters(
    scope: Construct,
    names: ReleaseParameterNames,
    bootstrap_asset: ecr_assets.DockerImageAsset,
) -> ReleaseParameters:
    """The four slots, seeded with the placeholder image for the first deploy."""
    return ReleaseParameters(
        names=names,
        repository_arn=ssm.StringParameter(
            scope,
            "ReleaseRepoArn",
            parameter_name=names.repository_arn,
            string_value=bootstrap_asset.repository.repository_arn,
        ),
        repository_name=ssm.StringParameter(
            scope,
            "ReleaseRepoName",
            parameter_name=names.repository_name,
            string_value=bootstrap_asset.repository.repository_name,
        ),
        release_tag=ssm.StringParameter(
            scope,
            "ReleaseImageTag",
            parameter_name=names.release_tag,
            string_value=bootstrap_asset.image_tag,
        ),
        package_version=ssm.StringParameter(
            scope,
            "PackageVersion",
            parameter_name=names.package_version,
            string_value=PACKAGE_VERSION_PLACEHOLDER,
        ),
    )


def release_build_role(
    scope: Construct,
    construct_id: str,
    description: str,
    artifact_bucket: s3.IBucket,
    repository: ecr.IRepository,
    parameters: ReleaseParameters,
) -> iam.Role:
    """CodeBuild role of a release build; the only writer of ``parameters``."""
    stack = Stack.of(scope)
    parameter_arns = parameters.parameter_arns()

    role = iam.Role(
        scope,
        construct_id,
        assumed_by=iam.ServicePrincipal("codebuild.amazonaws.com"),
        description=description,
        inline_policies={
            "cloudwatch": iam.PolicyDocument(
                assign_sids=True,
                statements=[
                    iam.PolicyStatement(
                        actions=[
                            "logs:CreateLogGroup",
                            "logs:CreateLogStream",
                            "logs:PutLogEvents",
                        ],
                        resources=[
                            f"arn:aws:logs:{stack.region}:{stack.account}:log-group:/aws/codebuild/*"
                        ],
                    )
                ],
            ),
            "codebuild": iam.PolicyDocument(
                assign_sids=True,
                statements=[
                    iam.PolicyStatement(
                        actions=[
                            "codebuild:CreateReportGroup",
                            "codebuild:CreateReport",
                            "codebuild:UpdateReport",
                            "codebuild:BatchPutTestCases",
                            "codebuild:BatchPutCodeCoverages",
                        ],
                        resources=[
                            f"arn:aws:codebuild:{stack.region}:{stack.account}:report-group/*"
                        ],
                    )
                ],
            ),
            "s3": iam.PolicyDocument(
                assign_sids=True,
                statements=[
                    iam.PolicyStatement(
                        actions=["s3:GetObject*", "s3:GetBucket*", "s3:List*"],
                        resources=[
                            artifact_bucket.bucket_arn,
                            artifact_bucket.arn_for_objects("*"),
                        ],
                    )
                ],
            ),
            "ecr": iam.PolicyDocument(
                assign_sids=True,
                statements=[
                    iam.PolicyStatement(
                        actions=ECR_PUSH_ACTIONS,
                        resources=[repository.repository_arn],
                    ),
                    iam.PolicyStatement(
                        actions=ECR_PULL_ACTIONS,
                        resources=[repository.repository_arn],
                    ),
                    iam.PolicyStatement(
                        actions=["ecr:GetAuthorizationToken"],
                        resources=["*"],
                    ),
                ],
            ),
            "secretsmanager": iam.PolicyDocument(
                assign_sids=True,
                statements=[
                    iam.PolicyStatement(
                        actions=["secretsmanager:GetSecretValue"],
                        resources=[
                            f"arn:aws:secretsmanager:{stack.region}:{stack.account}:secret:*"
                        ],
                    )
                ],
            ),
            "ssm": iam.PolicyDocument(
                assign_sids=True,
                statements=[
                    iam.PolicyStatement(
                        actions=SSM_READ_ACTIONS,
                        resources=parameter_arns,
                    ),
                    iam.PolicyStatement(
                        actions=["ssm:DescribeParameters"],
                        resources=["*"],
                    ),
                    iam.PolicyStatement(
                        actions=["ssm:PutParameter"],
                        resources=parameter_arns,
                    ),
                ],
            ),
        },
    )
    role.apply_removal_policy(RemovalPolicy.DESTROY)
    return role


def release_build_project(
    scope: Construct,
    construct_id: str,
    role: iam.IRole,
    build: ImageBuild,
    vpc: Optional[ec2.IVpc] = None,
) -> codebuild.PipelineProject:
    environment_variables: Dict[str, codebuild.BuildEnvironmentVariable] = {
        "REPOSITORY_URI": codebuild.BuildEnvironmentVariable(value=build.repository_uri),
    }
    for key, value in build.build_env.items():
        environment_variables[key] = codebuild.BuildEnvironmentVariable(
            value=value,
            type=codebuild.BuildEnvironmentVariableType.PLAINTEXT,
        )

    return codebuild.PipelineProject(
        scope,
        construct_id,
        cache=codebuild.Cache.local(codebuild.LocalCacheMode.DOCKER_LAYER),
        environment=codebuild.BuildEnvironment(
            compute_type=codebuild.ComputeType.MEDIUM,
            # docker builds need a privileged container
            privileged=True,
            build_image=codebuild.LinuxBuildImage.STANDARD_7_0,
        ),
        vpc=vpc,
        role=role,
        environment_variables=environment_variables,
        build_spec=codebuild.BuildSpec.from_object(render_buildspec(build)),
    )


def release_pipeline(
    scope: Construct,
    pipeline_name: str,
    artifact_bucket: s3.IBucket,
) -> codepipeline.Pipeline:
    return codepipeline.Pipeline(
        scope,
        "Pipeline",
        pipeline_name=pipeline_name,
        pipeline_type=codepipeline.PipelineType.V2,
        # a newer run replaces an in-flight one instead of queueing behind it
        execution_mode=codepipeline.ExecutionMode.SUPERSEDED,
        restart_execution_on_update=True,
        artifact_bucket=artifact_bucket,
    )


def source_action(
    action_name: str,
    repo: RepoEntry,
    connection_arn: str,
    output: codepipeline.Artifact,
) -> codepipeline_actions.CodeStarConnectionsSourceAction:
    return codepipeline_actions.CodeStarConnectionsSourceAction(
        action_name=action_name,
        connection_arn=connection_arn,
        output=output,
        owner=repo.owner,
        repo=repo.repo,
        branch=repo.branch,
    )


def add_release_stages(
    pipeline: codepipeline.Pipeline,
    environment: str,
    source: codepipeline.IAction,
    build: codepipeline.IAction,
    deploy: codepipeline.IAction,
) -> List[str]:
    """Add source, [approval], build and deploy stages in that order."""
    actions = {
        SOURCE_STAGE: source,
        APPROVAL_STAGE: codepipeline_actions.ManualApprovalAction(
            action_name="ApproveDeployment",
        ),
        BUILD_STAGE: build,
        DEPLOY_STAGE: deploy,
    }
    stage_names = pipeline_stage_names(environment)
    for stage_name in stage_names:
        pipeline.add_stage(stage_name=stage_name, actions=[actions[stage_name]])
    return stage_names
