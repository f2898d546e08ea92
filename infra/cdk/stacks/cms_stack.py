"""
Per-environment network, data and runtime stack of the CMS.

Provisions:
  - VPC with public / private subnets, S3 gateway endpoint and optional S3 flow logs
  - EFS file system shared by the CMS service and the tenant app functions
  - DocumentDB cluster with its credentials in Secrets Manager, plus a bastion host
  - Redis replication group (nested stack)
  - ECR repository and the four release parameters of the CMS service
  - ECS Fargate service behind an ALB, registered in the cms.arpa namespace

The container image is never referenced directly: the task definition resolves
it through the release parameters, which the CMS pipeline overwrites after
every build.
"""

from __future__ import annotations

import json

from aws_cdk import CfnOutput, RemovalPolicy, Stack
from aws_cdk import aws_certificatemanager as acm
from aws_cdk import aws_docdb as docdb
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_ecr as ecr
from aws_cdk import aws_ecr_assets as ecr_assets
from aws_cdk import aws_ecs as ecs
from aws_cdk import aws_ecs_patterns as ecs_patterns
from aws_cdk import aws_efs as efs
from aws_cdk import aws_iam as iam
from aws_cdk import aws_logs as logs
from aws_cdk import aws_s3 as s3
from aws_cdk import aws_secretsmanager as secretsmanager
from aws_cdk import aws_servicediscovery as servicediscovery
from constructs import Construct

from cms_infra.release.parameters import ReleaseParameterNames
from cms_infra.schemas.config import AppEnvConfig
from stacks.redis_stack import REDIS_PORT, RedisStack
from stacks.release import (
    ECR_PULL_ACTIONS,
    PLACEHOLDER_IMAGE_DIR,
    create_release_parameters,
)

APP_PORT = 3000
DOCDB_PORT = 27017
CONTAINER_NAME = "cms"
NAMESPACE_NAME = "cms.arpa"
CLOUD_MAP_SERVICE_NAME = "payload"
MEDIA_PATH = "/home/node/dist/media"
EFS_UID = "1001"


def lambda_pull_statement() -> iam.PolicyStatement:
    return iam.PolicyStatement(
        sid="AllowLambdaToPullImages",
        principals=[iam.ServicePrincipal("lambda.amazonaws.com")],
        actions=["ecr:BatchGetImage", "ecr:GetDownloadUrlForLayer"],
    )


def efs_access_point_options() -> dict:
    return {
        "create_acl": efs.Acl(owner_gid=EFS_UID, owner_uid=EFS_UID, permissions="750"),
        "path": "/export/lambda",
        "posix_user": efs.PosixUser(gid=EFS_UID, uid=EFS_UID),
    }


class CmsStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: AppEnvConfig,
        environment: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        env = environment
        removal_policy = RemovalPolicy.RETAIN if env == "prod" else RemovalPolicy.DESTROY

        # ── VPC ───────────────────────────────────────────────────────────────
        flow_logs = None
        if config.vpc.flow_log_bucket_arn:
            flow_log_bucket = s3.Bucket.from_bucket_arn(
                self, "FlowLogBucket", config.vpc.flow_log_bucket_arn
            )
            flow_logs = {
                "FlowLogS3": ec2.FlowLogOptions(
                    destination=ec2.FlowLogDestination.to_s3(
                        flow_log_bucket,
                        config.vpc.flow_log_prefix,
                        ec2.S3DestinationOptions(
                            file_format=ec2.FlowLogFileFormat.PARQUET,
                            hive_compatible_partitions=True,
                        ),
                    ),
                ),
            }

        vpc = ec2.Vpc(
            self,
            "InfraVPC",
            ip_addresses=ec2.IpAddresses.cidr(config.vpc.cidr),
            enable_dns_support=True,
            enable_dns_hostnames=True,
            max_azs=config.vpc.max_azs,
            nat_gateways=1,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=24,
                ),
                ec2.SubnetConfiguration(
                    name="Private",
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                    cidr_mask=24,
                ),
            ],
            # Keep S3 <-> apps traffic inside the VPC
            gateway_endpoints={
                "S3": ec2.GatewayVpcEndpointOptions(
                    service=ec2.GatewayVpcEndpointAwsService.S3
                ),
            },
            flow_logs=flow_logs,
        )
        self.vpc = vpc
        vpc_peer = ec2.Peer.ipv4(vpc.vpc_cidr_block)

        # ── Security Groups ────────────────────────────────────────────────────
        self.vpc_security_group = ec2.SecurityGroup(
            self, "VpcSecurityGroup", vpc=vpc, description=f"CMS VPC - {env}"
        )
        self.vpc_security_group.add_ingress_rule(
            vpc_peer, ec2.Port.tcp(REDIS_PORT), "Redis from the VPC"
        )
        self.vpc_security_group.add_ingress_rule(
            vpc_peer, ec2.Port.tcp(DOCDB_PORT), "DocumentDB from the VPC"
        )

        # ── EFS ───────────────────────────────────────────────────────────────
        file_system = efs.FileSystem(
            self,
            "Efs",
            vpc=vpc,
            encrypted=True,
            lifecycle_policy=efs.LifecyclePolicy.AFTER_14_DAYS,
            performance_mode=efs.PerformanceMode.GENERAL_PURPOSE,
            out_of_infrequent_access_policy=efs.OutOfInfrequentAccessPolicy.AFTER_1_ACCESS,
            throughput_mode=efs.ThroughputMode.BURSTING,
            removal_policy=removal_policy,
        )
        file_system.connections.allow_default_port_from(
            vpc_peer, "Allow NFS traffic from anyone in the VPC"
        )
        access_point = file_system.add_access_point(
            "AccessPoint", **efs_access_point_options()
        )
        self.file_system_id = file_system.file_system_id

        # ── Bastion host ──────────────────────────────────────────────────────
        bastion = ec2.BastionHostLinux(
            self,
            "BastionHost",
            vpc=vpc,
            security_group=ec2.SecurityGroup(
                self,
                "BastionSecurityGroup",
                vpc=vpc,
                allow_all_outbound=True,
                security_group_name=f"cms-{env}-bastion-sg",
            ),
            subnet_selection=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )
        if config.bastion.key_name:
            bastion.instance.instance.add_property_override(
                "KeyName", config.bastion.key_name
            )

        # ── DocumentDB ────────────────────────────────────────────────────────
        db_secret = secretsmanager.Secret(
            self,
            "DatabaseCredentialsSecret",
            secret_name=config.database.secret_name,
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"username": config.database.username}),
                generate_string_key="password",
                exclude_punctuation=True,
                include_space=False,
            ),
        )

        db_cluster = docdb.DatabaseCluster(
            self,
            "DbCluster",
            master_user=docdb.Login(
                username=config.database.username,
                password=db_secret.secret_value_from_json("password"),
            ),
            instance_type=ec2.InstanceType(
                f"{config.database.instance_class}.{config.database.instance_size}"
            ),
            instances=config.database.instances,
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
            ),
            security_group=ec2.SecurityGroup(
                self,
                "DatabaseClusterSecurityGroup",
                vpc=vpc,
                allow_all_outbound=True,
            ),
            port=DOCDB_PORT,
            export_audit_logs_to_cloud_watch=True,
            export_profiler_logs_to_cloud_watch=True,
            storage_encrypted=True,
            deletion_protection=(env == "prod"),
            removal_policy=removal_policy,
        )
        # adds host / port to the secret so the service can read them
        db_secret.attach(db_cluster)
        db_cluster.connections.allow_from(
            bastion.connections, ec2.Port.tcp(DOCDB_PORT), "Bastion host connection"
        )
        db_cluster.connections.allow_from(
            vpc_peer, ec2.Port.tcp(DOCDB_PORT), "CMS service and apps in the VPC"
        )

        # ── ECR + release parameters ──────────────────────────────────────────
        self.ecr = ecr.Repository(
            self,
            "PayloadCmsECR",
            removal_policy=RemovalPolicy.DESTROY,
            empty_on_delete=True,
            image_scan_on_push=True,
        )
        self.ecr.add_to_resource_policy(lambda_pull_statement())

        bootstrap_asset = ecr_assets.DockerImageAsset(
            self, "BootstrapAsset", directory=str(PLACEHOLDER_IMAGE_DIR)
        )
        self.release_parameters = create_release_parameters(
            self, ReleaseParameterNames.for_deployable(env), bootstrap_asset
        )

        # ── Fargate service ───────────────────────────────────────────────────
        log_group = logs.LogGroup(
            self,
            "CMSLogs",
            log_group_name=f"/ecs/cms-{env}",
            retention=logs.RetentionDays.ONE_MONTH,
            removal_policy=RemovalPolicy.DESTROY,
        )

        task_definition = ecs.FargateTaskDefinition(
            self,
            "TaskDefinition",
            memory_limit_mib=config.fargate_config.memory_limit_mib,
            volumes=[
                ecs.Volume(
                    name="efs",
                    efs_volume_configuration=ecs.EfsVolumeConfiguration(
                        file_system_id=file_system.file_system_id,
                        authorization_config=ecs.AuthorizationConfig(
                            access_point_id=access_point.access_point_id,
                        ),
                        transit_encryption="ENABLED",
                    ),
                )
            ],
        )

        container = task_definition.add_container(
            CONTAINER_NAME,
            image=ecs.ContainerImage.from_ecr_repository(
                self.release_parameters.image_repository(self, "ReleaseRepo"),
                tag=self.release_parameters.release_tag.string_value,
            ),
            logging=ecs.LogDrivers.aws_logs(stream_prefix="cms", log_group=log_group),
            port_mappings=[ecs.PortMapping(container_port=APP_PORT)],
            environment={
                "PORT": str(APP_PORT),
                "MONGODB_USE_SSL": "true",
                **config.fargate_config.env,
            },
            health_check=ecs.HealthCheck(
                command=["CMD-SHELL", f"curl -f http://localhost:{APP_PORT}/admin || exit 1"],
            ),
            secrets={
                "MONGODB_USERNAME": ecs.Secret.from_secrets_manager(db_secret, "username"),
                "MONGODB_PASSWORD": ecs.Secret.from_secrets_manager(db_secret, "password"),
                "MONGODB_HOST": ecs.Secret.from_secrets_manager(db_secret, "host"),
                "MONGODB_PORT": ecs.Secret.from_secrets_manager(db_secret, "port"),
            },
        )
        container.add_mount_points(
            ecs.MountPoint(container_path=MEDIA_PATH, source_volume="efs", read_only=False)
        )

        for index, entry in enumerate(config.fargate_config.secrets):
            secret = secretsmanager.Secret.from_secret_complete_arn(
                self, f"Secret{index}", entry.ssm_parameter
            )
            for field in entry.fields:
                container.add_secret(field, ecs.Secret.from_secrets_manager(secret, field))

        service_sg = ec2.SecurityGroup(
            self,
            "DefaultSg",
            vpc=vpc,
            security_group_name=f"cms-{env}-fargate-service",
            description=f"CMS Fargate service - {env}",
        )
        service_sg.add_ingress_rule(
            vpc_peer,
            ec2.Port.tcp(APP_PORT),
            f"Allow Inbound traffic from vpc on {APP_PORT}/tcp",
        )

        service = ecs_patterns.ApplicationLoadBalancedFargateService(
            self,
            "Service",
            vpc=vpc,
            task_definition=task_definition,
            desired_count=config.fargate_config.desired_count,
            min_healthy_percent=100,
            assign_public_ip=False,
            security_groups=[service_sg],
            certificate=acm.Certificate.from_certificate_arn(
                self, "AlbCertificate", config.alb.certificate
            ),
            redirect_http=True,
            cloud_map_options=ecs.CloudMapOptions(
                name=CLOUD_MAP_SERVICE_NAME,
                cloud_map_namespace=servicediscovery.PrivateDnsNamespace(
                    self, "Namespace", name=NAMESPACE_NAME, vpc=vpc
                ),
                container_port=APP_PORT,
            ),
        )
        service.target_group.configure_health_check(
            enabled=True,
            path=config.alb.health_check_path,
            healthy_http_codes=config.alb.healthy_http_codes,
        )
        self.ecr.grant_pull(service.task_definition.obtain_execution_role())
        # the running task reads the current image through the release parameters
        service.task_definition.obtain_execution_role().add_to_principal_policy(
            iam.PolicyStatement(actions=ECR_PULL_ACTIONS, resources=["*"])
        )
        file_system.connections.allow_default_port_from(service.service)

        self.fargate_service = service.service
        self.load_balancer = service.load_balancer

        RedisStack(self, "Redis", vpc=vpc, redis=config.redis, environment=env)

        # ── Stack outputs ─────────────────────────────────────────────────────
        CfnOutput(
            self,
            "PrivateDNSName",
            value=f"{CLOUD_MAP_SERVICE_NAME}.{NAMESPACE_NAME}",
            description="Private DNS Name",
        )
        CfnOutput(
            self,
            "AlbDNSName",
            value=service.load_balancer.load_balancer_dns_name,
            description="DNS of ALB in this stack",
        )
