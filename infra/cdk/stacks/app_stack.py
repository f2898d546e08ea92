"""
Runtime of one tenant app: a container-image Lambda behind API Gateway.

Like the CMS service, the function never names its image directly. It is
created from whatever the tenant's release parameters point at (the
placeholder image on the first deploy) and later moved to new releases by the
updater function, which the tenant pipeline invokes.
"""

from __future__ import annotations

from typing import Dict

from aws_cdk import Duration, NestedStack, PhysicalName, RemovalPolicy
from aws_cdk import aws_apigateway as apigateway
from aws_cdk import aws_certificatemanager as acm
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_ecr as ecr
from aws_cdk import aws_ecr_assets as ecr_assets
from aws_cdk import aws_efs as efs
from aws_cdk import aws_iam as iam
from aws_cdk import aws_kinesisfirehose as firehose
from aws_cdk import aws_lambda as lambda_
from aws_cdk import aws_logs as logs
from aws_cdk import aws_s3 as s3
from constructs import Construct

from cms_infra.release.parameters import ReleaseParameterNames
from cms_infra.schemas.config import TenantApp
from stacks.cms_stack import efs_access_point_options, lambda_pull_statement
from stacks.release import (
    LAMBDA_CODE_DIR,
    PLACEHOLDER_IMAGE_DIR,
    create_release_parameters,
)

EFS_MOUNT_PATH = "/mnt/efs"
BINARY_MEDIA_TYPES = [
    "application/*",
    "image/*",
    "audio/*",
    "video/*",
    "multipart/form-data",
]


def function_log_group(scope: Construct, construct_id: str) -> logs.LogGroup:
    return logs.LogGroup(
        scope,
        construct_id,
        retention=logs.RetentionDays.ONE_DAY,
        removal_policy=RemovalPolicy.DESTROY,
    )


def tenant_environment(
    app: TenantApp,
    names: ReleaseParameterNames,
    region: str,
    bucket_name: str,
    delivery_stream_name: str,
) -> Dict[str, str]:
    environment = {
        "IMAGE_TAG_PARAMETER_NAME": names.release_tag,
        "VERSION_PARAMETER_NAME": names.package_version,
        "REGION": region,
        "S3_BUCKET_NAME": bucket_name,
        "LOG_DELIVERY_STREAM": delivery_stream_name,
    }
    if app.cms.public:
        environment["CMS_PUBLIC_URL"] = app.cms.public
    if app.cms.private:
        environment["CMS_PRIVATE_URL"] = app.cms.private
    # app_env wins over the defaults above
    environment.update(app.app_env)
    return environment


class AppStack(NestedStack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        name: str,
        app: TenantApp,
        vpc: ec2.IVpc,
        file_system_id: str,
        bucket: s3.IBucket,
        delivery_stream: firehose.CfnDeliveryStream,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.ecr = ecr.Repository(
            self,
            "AppsECR",
            removal_policy=RemovalPolicy.DESTROY,
            empty_on_delete=True,
            image_scan_on_push=True,
        )
        self.ecr.add_to_resource_policy(lambda_pull_statement())

        bootstrap_asset = ecr_assets.DockerImageAsset(
            self, "BootstrapAsset", directory=str(PLACEHOLDER_IMAGE_DIR)
        )
        self.release_parameters = create_release_parameters(
            self, ReleaseParameterNames.for_deployable(name), bootstrap_asset
        )
        names = self.release_parameters.names

        # ── Shared EFS ────────────────────────────────────────────────────────
        file_system = efs.FileSystem.from_file_system_attributes(
            self,
            "Efs",
            file_system_id=file_system_id,
            security_group=ec2.SecurityGroup(self, "EfsLambdaGroup", vpc=vpc),
        )
        access_point = efs.AccessPoint(
            self,
            "LambdaAccessPoint",
            file_system=file_system,
            **efs_access_point_options(),
        )

        # ── App function ──────────────────────────────────────────────────────
        self.function = lambda_.DockerImageFunction(
            self,
            "AppLambda",
            code=lambda_.DockerImageCode.from_ecr(
                self.release_parameters.image_repository(self, "Ecr"),
                tag_or_digest=self.release_parameters.release_tag.string_value,
            ),
            timeout=Duration.minutes(15),
            memory_size=app.memory_size,
            vpc=vpc,
            function_name=PhysicalName.GENERATE_IF_NEEDED,
            log_group=function_log_group(self, "AppLambdaLogs"),
            description=f"lambda function hosting cms/{name}",
            environment=tenant_environment(
                app, names, self.region, bucket.bucket_name, delivery_stream.ref
            ),
            filesystem=lambda_.FileSystem.from_efs_access_point(
                access_point, EFS_MOUNT_PATH
            ),
        )
        bucket.grant_read_write(self.function)
        file_system.connections.allow_default_port_from(self.function)
        self.ecr.grant_pull(self.function)
        self.function.add_to_role_policy(
            iam.PolicyStatement(
                actions=["firehose:PutRecord", "firehose:PutRecordBatch"],
                resources=[delivery_stream.attr_arn],
            )
        )

        # ── API ───────────────────────────────────────────────────────────────
        integration = apigateway.LambdaIntegration(self.function)
        self.api = apigateway.RestApi(
            self,
            "Api",
            rest_api_name=f"api-cms-{name}",
            description=f"api gateway for cms/{name}",
            cloud_watch_role=True,
            deploy_options=apigateway.StageOptions(
                method_options={
                    "/*/*": apigateway.MethodDeploymentOptions(
                        logging_level=apigateway.MethodLoggingLevel.INFO,
                        data_trace_enabled=True,
                    )
                },
            ),
            domain_name=apigateway.DomainNameOptions(
                certificate=acm.Certificate.from_certificate_arn(
                    self, "ApiGwCertificate", app.certificate
                ),
                domain_name=app.domain,
            ),
            binary_media_types=BINARY_MEDIA_TYPES,
            default_integration=integration,
        )
        self.api.root.add_proxy(default_integration=integration)

        # ── /version ──────────────────────────────────────────────────────────
        self.version_function = lambda_.Function(
            self,
            "VersionFunction",
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler="version.handler",
            code=lambda_.Code.from_asset(str(LAMBDA_CODE_DIR)),
            timeout=Duration.seconds(30),
            memory_size=128,
            log_group=function_log_group(self, "VersionFunctionLogs"),
            description="Version lambda function",
            environment={
                "IMAGE_TAG_PARAMETER_NAME": names.release_tag,
                "VERSION_PARAMETER_NAME": names.package_version,
                "REGION": self.region,
            },
        )
        self.release_parameters.release_tag.grant_read(self.version_function)
        self.release_parameters.package_version.grant_read(self.version_function)
        self.api.root.add_resource("version").add_method(
            "GET", apigateway.LambdaIntegration(self.version_function)
        )

        # ── Updater ───────────────────────────────────────────────────────────
        self.updater_lambda = lambda_.Function(
            self,
            "UpdaterLambda",
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler="updater.handler",
            code=lambda_.Code.from_asset(str(LAMBDA_CODE_DIR)),
            # waits for the code update before publishing a version
            timeout=Duration.minutes(5),
            memory_size=128,
            log_group=function_log_group(self, "UpdaterLambdaLogs"),
            description=(
                "This lambda is responsible for deploying newly built images "
                "to a lambda function"
            ),
            environment={
                "FUNCTION_ARN": self.function.function_arn,
                "IMAGE_PARAMETER_NAME": names.repository_name,
                "IMAGE_TAG_PARAMETER_NAME": names.release_tag,
                "REGION": self.region,
            },
        )
        self.updater_lambda.add_to_role_policy(
            iam.PolicyStatement(
                actions=[
                    "lambda:UpdateFunctionCode",
                    "lambda:PublishVersion",
                    "lambda:UpdateFunctionConfiguration",
                    "lambda:GetFunctionConfiguration",
                ],
                resources=[self.function.function_arn],
            )
        )
        self.release_parameters.repository_name.grant_read(self.updater_lambda)
        self.release_parameters.release_tag.grant_read(self.updater_lambda)
        self.ecr.grant_pull(self.updater_lambda)
        self.updater_lambda.add_to_role_policy(
            iam.PolicyStatement(
                actions=["ecr:SetRepositoryPolicy", "ecr:GetRepositoryPolicy"],
                resources=[self.ecr.repository_arn],
            )
        )
