from aws_cdk import NestedStack
from aws_cdk import aws_codepipeline as codepipeline
from aws_cdk import aws_codepipeline_actions as codepipeline_actions
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_ecr as ecr
from aws_cdk import aws_lambda as lambda_
from aws_cdk import aws_s3 as s3
from constructs import Construct

from cms_infra.release.buildspec import ImageBuild
from cms_infra.schemas.config import TenantApp
from stacks.release import (
    ReleaseParameters,
    add_release_stages,
    release_build_project,
    release_build_role,
    release_pipeline,
    source_action,
)


def app_pipeline_name(name: str, app: TenantApp) -> str:
    return app.repo.pipeline_name or f"{app.repo.owner}-{app.repo.repo}-{name}"


class AppPipelineStack(NestedStack):
    """Release pipeline of one tenant app.

    The build runs inside the VPC so it can reach the CMS while generating the
    app; the deploy stage hands over to the tenant's updater function.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        name: str,
        app: TenantApp,
        environment: str,
        vpc: ec2.IVpc,
        repository: ecr.IRepository,
        release_parameters: ReleaseParameters,
        updater_lambda: lambda_.IFunction,
        artifact_bucket: s3.IBucket,
        codestar_connection_arn: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        pipeline = release_pipeline(self, app_pipeline_name(name, app), artifact_bucket)
        source_output = codepipeline.Artifact()
        build_output = codepipeline.Artifact()

        role = release_build_role(
            self,
            "BuildCMSAppRole",
            "Role used by build CMS apps",
            artifact_bucket,
            repository,
            release_parameters,
        )
        project = release_build_project(
            self,
            "BuildCMSAppPipeline",
            role,
            ImageBuild(
                region=self.region,
                account=self.account,
                repository_uri=repository.repository_uri,
                repository_arn=repository.repository_arn,
                repository_name=repository.repository_name,
                parameters=release_parameters.names,
                build_env=app.build_env,
            ),
            vpc=vpc,
        )
        pipeline.node.add_dependency(role)

        self.stage_names = add_release_stages(
            pipeline,
            environment,
            source=source_action(
                "Pull_Payload_Infra",
                app.repo,
                app.repo.codestar_connection_arn or codestar_connection_arn,
                source_output,
            ),
            build=codepipeline_actions.CodeBuildAction(
                action_name="BuildCMSApp",
                input=source_output,
                outputs=[build_output],
                project=project,
            ),
            deploy=codepipeline_actions.LambdaInvokeAction(
                action_name="PublishApp",
                lambda_=updater_lambda,
            ),
        )
        self.pipeline = pipeline
        self.build_role = role
