from aws_cdk import CfnUpdatePolicy, NestedStack
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_elasticache as elasticache
from constructs import Construct

from cms_infra.schemas.config import RedisConfig

REDIS_PORT = 6379


class RedisStack(NestedStack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        vpc: ec2.IVpc,
        redis: RedisConfig,
        environment: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        subnet_group = elasticache.CfnSubnetGroup(
            self,
            "RedisCacheSubnetGroup",
            cache_subnet_group_name=f"cms-{environment}-private",
            description="Redis cache subnet",
            subnet_ids=[subnet.subnet_id for subnet in vpc.private_subnets],
        )

        redis_sg = ec2.SecurityGroup(self, "Redis", vpc=vpc)
        redis_sg.add_ingress_rule(
            ec2.Peer.ipv4(vpc.vpc_cidr_block),
            ec2.Port.tcp(REDIS_PORT),
            f"Allow incoming traffic from vpc on {REDIS_PORT}/tcp",
        )

        self.redis_cache = elasticache.CfnReplicationGroup(
            self,
            "RedisCache",
            **redis.model_dump(exclude_none=True),
            # settings below always win over config.yml
            automatic_failover_enabled=True,
            replication_group_description="Redis cache cluster",
            cache_subnet_group_name=subnet_group.ref,
            security_group_ids=[redis_sg.security_group_id],
        )
        # https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/aws-attribute-updatepolicy.html#cfn-attributes-updatepolicy-useonlineresharding
        self.redis_cache.cfn_options.update_policy = CfnUpdatePolicy(
            use_online_resharding=True
        )
