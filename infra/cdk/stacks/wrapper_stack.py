"""
Shared resources of the tenant apps and one AppStack / AppPipelineStack pair
per entry of ``apps`` in config.yml.

Shared by every tenant: the apps bucket (readable and writable from each
configured account), the pipelines' artifact bucket, the api-logs bucket and
the Firehose delivery stream feeding it, the VPC and the EFS file system.
"""

from __future__ import annotations

from typing import Dict, Mapping, Sequence

from aws_cdk import RemovalPolicy, Stack
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_iam as iam
from aws_cdk import aws_kinesisfirehose as firehose
from aws_cdk import aws_s3 as s3
from constructs import Construct

from cms_infra.logging_config import get_logger
from cms_infra.schemas.config import AccountConfig, TenantApp
from stacks.app_pipeline_stack import AppPipelineStack
from stacks.app_stack import AppStack

logger = get_logger(__name__)

FIREHOSE_PREFIX = "firehose/"


class CmsAppsWrapperStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        vpc: ec2.IVpc,
        file_system_id: str,
        apps: Mapping[str, TenantApp],
        environment: str,
        accounts: Sequence[AccountConfig],
        codestar_connection_arn: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # ── Shared buckets ────────────────────────────────────────────────────
        self.apps_bucket = s3.Bucket(
            self,
            "AppsBucket",
            bucket_name=f"payloadcms-{self.account}-{self.region}",
            removal_policy=RemovalPolicy.DESTROY,
        )
        for account in accounts:
            principal = iam.AccountPrincipal(account.id)
            self.apps_bucket.add_to_resource_policy(
                iam.PolicyStatement(
                    sid=f"AllowObjectAccessForAccount{account.id}",
                    principals=[principal],
                    actions=["s3:DeleteObject", "s3:GetObject", "s3:PutObject"],
                    resources=[self.apps_bucket.arn_for_objects("*")],
                )
            )
            self.apps_bucket.add_to_resource_policy(
                iam.PolicyStatement(
                    sid=f"AllowBucketAccessForAccount{account.id}",
                    principals=[principal],
                    actions=["s3:ListBucket"],
                    resources=[self.apps_bucket.bucket_arn],
                )
            )

        artifact_bucket = s3.Bucket(
            self,
            "ArtifactsBucket",
            auto_delete_objects=True,
            removal_policy=RemovalPolicy.DESTROY,
        )

        # ── API logs ──────────────────────────────────────────────────────────
        logs_bucket = s3.Bucket(
            self,
            "ApiLogsBucket",
            bucket_name=f"api-logs-{self.account}-{self.region}",
            removal_policy=RemovalPolicy.DESTROY,
            versioned=True,
        )
        firehose_role = iam.Role(
            self,
            "FirehoseRole",
            assumed_by=iam.ServicePrincipal("firehose.amazonaws.com"),
        )
        firehose_role.add_to_policy(
            iam.PolicyStatement(
                actions=[
                    "s3:AbortMultipartUpload",
                    "s3:GetBucketLocation",
                    "s3:GetObject",
                    "s3:ListBucket",
                    "s3:ListBucketMultipartUploads",
                    "s3:PutObject",
                ],
                resources=[logs_bucket.bucket_arn, logs_bucket.arn_for_objects("*")],
            )
        )
        self.delivery_stream = firehose.CfnDeliveryStream(
            self,
            "SharedDeliveryStream",
            delivery_stream_type="DirectPut",
            extended_s3_destination_configuration=firehose.CfnDeliveryStream.ExtendedS3DestinationConfigurationProperty(
                bucket_arn=logs_bucket.bucket_arn,
                buffering_hints=firehose.CfnDeliveryStream.BufferingHintsProperty(
                    interval_in_seconds=60,
                    size_in_m_bs=50,
                ),
                compression_format="GZIP",
                role_arn=firehose_role.role_arn,
                prefix=FIREHOSE_PREFIX,
            ),
        )
        # the stream validates its role on creation
        self.delivery_stream.node.add_dependency(firehose_role)

        # ── Tenant apps ───────────────────────────────────────────────────────
        self.apps: Dict[str, AppStack] = {}
        self.app_pipelines: Dict[str, AppPipelineStack] = {}
        for name, app in apps.items():
            app_stack = AppStack(
                self,
                f"App-{name}",
                name=name,
                app=app,
                vpc=vpc,
                file_system_id=file_system_id,
                bucket=self.apps_bucket,
                delivery_stream=self.delivery_stream,
            )
            self.app_pipelines[name] = AppPipelineStack(
                self,
                f"AppPipeline-{name}",
                name=name,
                app=app,
                environment=environment,
                vpc=vpc,
                repository=app_stack.ecr,
                release_parameters=app_stack.release_parameters,
                updater_lambda=app_stack.updater_lambda,
                artifact_bucket=artifact_bucket,
                codestar_connection_arn=codestar_connection_arn,
            )
            self.apps[name] = app_stack
            logger.info(
                "tenant_app_declared",
                environment=environment,
                app=name,
                domain=app.domain,
                parameter_namespace=app_stack.release_parameters.names.namespace,
            )
