from aws_cdk import RemovalPolicy, Stack
from aws_cdk import aws_codepipeline as codepipeline
from aws_cdk import aws_codepipeline_actions as codepipeline_actions
from aws_cdk import aws_ecr as ecr
from aws_cdk import aws_ecs as ecs
from aws_cdk import aws_s3 as s3
from constructs import Construct

from cms_infra.release.buildspec import service_image_build
from cms_infra.schemas.config import RepoEntry
from stacks.cms_stack import CONTAINER_NAME
from stacks.release import (
    ReleaseParameters,
    add_release_stages,
    release_build_project,
    release_build_role,
    release_pipeline,
    source_action,
)


def service_pipeline_name(repo: RepoEntry, environment: str) -> str:
    return repo.pipeline_name or f"{repo.owner}-{repo.repo}-{environment}"


class PipelineStack(Stack):
    """Builds the CMS image and rolls it out to the environment's Fargate service."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        repo: RepoEntry,
        codestar_connection_arn: str,
        repository: ecr.IRepository,
        environment: str,
        fargate_service: ecs.IBaseService,
        release_parameters: ReleaseParameters,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        artifact_bucket = s3.Bucket(
            self,
            "ArtifactsBucket",
            auto_delete_objects=True,
            removal_policy=RemovalPolicy.DESTROY,
        )
        pipeline = release_pipeline(
            self, service_pipeline_name(repo, environment), artifact_bucket
        )

        source_output = codepipeline.Artifact()
        build_output = codepipeline.Artifact()

        role = release_build_role(
            self,
            "BuildSourceRole",
            "Role used by build source role",
            artifact_bucket,
            repository,
            release_parameters,
        )
        project = release_build_project(
            self,
            "PipelineProject",
            role,
            service_image_build(
                region=self.region,
                account=self.account,
                repository_uri=repository.repository_uri,
                repository_arn=repository.repository_arn,
                repository_name=repository.repository_name,
                parameters=release_parameters.names,
                container_name=CONTAINER_NAME,
            ),
        )
        pipeline.node.add_dependency(role)

        self.stage_names = add_release_stages(
            pipeline,
            environment,
            source=source_action(
                "Pull_CMS_CODE", repo, codestar_connection_arn, source_output
            ),
            build=codepipeline_actions.CodeBuildAction(
                action_name="BuildSource",
                input=source_output,
                outputs=[build_output],
                project=project,
            ),
            deploy=codepipeline_actions.EcsDeployAction(
                action_name="DeployToECS",
                input=build_output,
                service=fargate_service,
            ),
        )
        self.pipeline = pipeline
        self.build_role = role
