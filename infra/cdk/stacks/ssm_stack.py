from typing import Sequence

from aws_cdk import CfnOutput, Stack
from aws_cdk import aws_secretsmanager as secretsmanager
from constructs import Construct

from cms_infra.schemas.config import secret_construct_id


class SsmStack(Stack):
    """One empty secret per name in config.yml ``ssms``, filled in by hand."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        ssms: Sequence[str],
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.secrets = {}
        for name in ssms:
            secret_id = secret_construct_id(name)
            secret = secretsmanager.Secret(
                self,
                secret_id,
                secret_name=name,
                description=f"Key(s) for {name}",
                generate_secret_string=secretsmanager.SecretStringGenerator(
                    secret_string_template="{}",
                    generate_string_key="replace me",
                ),
            )
            self.secrets[name] = secret

            CfnOutput(
                self,
                f"{secret_id}Arn",
                value=secret.secret_full_arn or secret.secret_arn,
                description=f"Secret ARN for {name}",
            )
