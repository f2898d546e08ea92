"""Promotion order of the environments and where the manual gates sit."""

import dataclasses
from typing import List, Optional

from cms_infra.schemas.config import ENVIRONMENT_NAMES, AppEnvConfig, ConfigDocument

STAGE_IDS = {"dev": "Dev", "qa": "QA", "prod": "Prod"}

ACCOUNT_LABELS = {"dev": "Dev", "qa": "QA", "prod": "Production"}

SOURCE_STAGE = "Pull_Source_Code"
APPROVAL_STAGE = "ApproveDeployment"
BUILD_STAGE = "Build"
DEPLOY_STAGE = "Deploy"


def requires_manual_approval(environment: str) -> bool:
    """Every environment after the first one waits for a human."""
    if environment not in ENVIRONMENT_NAMES:
        raise ValueError(f"unknown environment {environment!r}")
    return environment != ENVIRONMENT_NAMES[0]


def pipeline_stage_names(environment: str) -> List[str]:
    """Ordered stage names of a release pipeline in ``environment``."""
    stages = [SOURCE_STAGE]
    if requires_manual_approval(environment):
        stages.append(APPROVAL_STAGE)
    stages.extend([BUILD_STAGE, DEPLOY_STAGE])
    return stages


@dataclasses.dataclass(frozen=True)
class PromotionStage:
    stage_id: str
    environment: str
    config: AppEnvConfig
    approval_id: Optional[str] = None
    approval_comment: Optional[str] = None

    @property
    def gated(self) -> bool:
        return self.approval_id is not None


def plan_promotion(document: ConfigDocument) -> List[PromotionStage]:
    stages = []
    for environment, config in document.environments():
        stage_id = STAGE_IDS[environment]
        if requires_manual_approval(environment):
            stages.append(
                PromotionStage(
                    stage_id=stage_id,
                    environment=environment,
                    config=config,
                    approval_id=f"Approve{stage_id}",
                    approval_comment=(
                        "Approve deployment of Website to the "
                        f"{ACCOUNT_LABELS[environment]} account"
                    ),
                )
            )
        else:
            stages.append(
                PromotionStage(stage_id=stage_id, environment=environment, config=config)
            )
    return stages
