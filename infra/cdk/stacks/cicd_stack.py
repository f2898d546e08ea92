"""
Self-mutating CDK pipeline that promotes the whole CMS platform through
dev -> qa -> prod, with a manual approval in front of every environment after
the first.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

import aws_cdk as cdk
from aws_cdk import SecretValue, Stack, Stage, pipelines
from aws_cdk import aws_codepipeline as codepipeline
from constructs import Construct

from cms_infra.logging_config import get_logger
from cms_infra.overrides import apply_overrides
from cms_infra.promotion import plan_promotion
from cms_infra.schemas.config import (
    AccountConfig,
    AppEnvConfig,
    CicdConfig,
    ConfigDocument,
    Env,
    RepoEntry,
)
from cms_infra.tagging import apply_standard_tags
from stacks.cms_stack import CmsStack
from stacks.pipeline_stack import PipelineStack
from stacks.ssm_stack import SsmStack
from stacks.waf_stack import WafStack
from stacks.wrapper_stack import CmsAppsWrapperStack

logger = get_logger(__name__)

SSM_STACK_ID = "CmsSsmStack"
CMS_STACK_ID = "CmsStack"
PIPELINE_STACK_ID = "CmsPipeline"
WAF_STACK_ID = "CmsWaf"
WRAPPER_STACK_ID = "CmsAppWrapper"


def cdk_environment(env: Env) -> cdk.Environment:
    return cdk.Environment(account=env.account, region=env.region)


def synth_commands(repo: RepoEntry) -> List[str]:
    commands = [f"cd ./{repo.path}"] if repo.path else []
    commands.extend(["pip install -e .", "cdk synth"])
    return commands


def synth_output_directory(repo: RepoEntry) -> str:
    return f"./{repo.path}/cdk.out" if repo.path else "cdk.out"


def trigger_file_paths(repo: RepoEntry) -> List[str]:
    """Pushes that start the pipeline; empty means every push to the branch."""
    return [f"{repo.path}/**"] if repo.path else []


def synth_source(cicd: CicdConfig) -> pipelines.CodePipelineSource:
    repo = cicd.repo
    repo_string = f"{repo.owner}/{repo.repo}"
    if repo.codestar_connection_arn:
        return pipelines.CodePipelineSource.connection(
            repo_string, repo.branch, connection_arn=repo.codestar_connection_arn
        )
    return pipelines.CodePipelineSource.git_hub(
        repo_string,
        repo.branch,
        authentication=SecretValue.secrets_manager(cicd.github_token_arn),
    )


class CmsEnvironmentStage(Stage):
    """Every stack of one environment, built in dependency order."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: AppEnvConfig,
        environment: str,
        accounts: Sequence[AccountConfig],
        ssms: Sequence[str],
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        env = cdk_environment(config.env)

        self.ssm_stack = self._finish(
            SsmStack(self, SSM_STACK_ID, ssms=ssms, env=env), config
        )

        self.cms_stack = self._finish(
            CmsStack(
                self, CMS_STACK_ID, config=config, environment=environment, env=env
            ),
            config,
        )

        self.pipeline_stack = self._finish(
            PipelineStack(
                self,
                PIPELINE_STACK_ID,
                repo=config.repo,
                codestar_connection_arn=config.codestar_connection_arn,
                repository=self.cms_stack.ecr,
                environment=environment,
                fargate_service=self.cms_stack.fargate_service,
                release_parameters=self.cms_stack.release_parameters,
                env=env,
            ),
            config,
        )
        self.pipeline_stack.add_dependency(self.cms_stack)

        self.waf_stack = self._finish(
            WafStack(
                self,
                WAF_STACK_ID,
                load_balancer_arn=self.cms_stack.load_balancer.load_balancer_arn,
                waf=config.waf,
                allowed_ipv4=config.allowed_ip_set.ipv4,
                env=env,
            ),
            config,
        )
        self.waf_stack.add_dependency(self.cms_stack)

        self.wrapper_stack = self._finish(
            CmsAppsWrapperStack(
                self,
                WRAPPER_STACK_ID,
                vpc=self.cms_stack.vpc,
                file_system_id=self.cms_stack.file_system_id,
                apps=config.apps,
                environment=environment,
                accounts=accounts,
                codestar_connection_arn=config.codestar_connection_arn,
                description="A wrapper stack for all apps in CMS project",
                env=env,
            ),
            config,
        )
        self.wrapper_stack.add_dependency(self.pipeline_stack)

        logger.info(
            "environment_stage_declared",
            stage=construct_id,
            environment=environment,
            account=config.env.account,
            region=config.env.region,
            apps=sorted(config.apps),
        )

    @staticmethod
    def _finish(stack: Stack, config: AppEnvConfig) -> Stack:
        apply_standard_tags(stack)
        return apply_overrides(stack, config.overrides.get(stack.node.id, {}))


class CicdStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        document: ConfigDocument,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        apply_standard_tags(self)

        repo = document.cicd.repo
        # V2 so that pushes can be filtered by path through a trigger
        code_pipeline = codepipeline.Pipeline(
            self,
            "Pipeline",
            pipeline_name=repo.pipeline_name,
            pipeline_type=codepipeline.PipelineType.V2,
            cross_account_keys=True,
            restart_execution_on_update=True,
        )
        self.pipeline = pipelines.CodePipeline(
            self,
            "CDKPipeline",
            code_pipeline=code_pipeline,
            docker_enabled_for_synth=True,
            publish_assets_in_parallel=True,
            synth=pipelines.ShellStep(
                "Synth",
                input=synth_source(document.cicd),
                install_commands=["npm install -g aws-cdk"],
                commands=synth_commands(repo),
                primary_output_directory=synth_output_directory(repo),
            ),
        )

        self.stages: Dict[str, CmsEnvironmentStage] = {}
        for planned in plan_promotion(document):
            stage = CmsEnvironmentStage(
                self,
                planned.stage_id,
                config=planned.config,
                environment=planned.environment,
                accounts=document.accounts,
                ssms=document.ssms,
                env=cdk_environment(planned.config.env),
            )
            pre = []
            if planned.gated:
                pre.append(
                    pipelines.ManualApprovalStep(
                        planned.approval_id, comment=planned.approval_comment
                    )
                )
            self.pipeline.add_stage(stage, pre=pre)
            self.stages[planned.environment] = stage

        self.pipeline.build_pipeline()
        self._filter_pushes_by_path(document.cicd)

    def _filter_pushes_by_path(self, cicd: CicdConfig) -> None:
        """Only start on pushes under ``repo.path``.

        Git triggers need a CodeStar connection source; a GitHub token source
        keeps its webhook on every push to the branch.
        """
        file_paths = trigger_file_paths(cicd.repo)
        if not file_paths:
            return
        if not cicd.repo.codestar_connection_arn:
            logger.warning(
                "pipeline_path_filter_skipped",
                path=cicd.repo.path,
                reason="GitHub token source does not support git triggers",
            )
            return

        code_pipeline = self.pipeline.pipeline
        (source_stage,) = [s for s in code_pipeline.stages if s.stage_name == "Source"]
        code_pipeline.add_trigger(
            provider_type=codepipeline.ProviderType.CODE_STAR_SOURCE_CONNECTION,
            git_configuration=codepipeline.GitConfiguration(
                source_action=source_stage.actions[0],
                push_filter=[
                    codepipeline.GitPushFilter(
                        branches_includes=[cicd.repo.branch],
                        file_paths_includes=file_paths,
                    )
                ],
            ),
        )
