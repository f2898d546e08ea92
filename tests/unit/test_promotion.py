import pytest

from cms_infra.promotion import (
    APPROVAL_STAGE,
    plan_promotion,
    pipeline_stage_names,
    requires_manual_approval,
)


class TestRequiresManualApproval:
    def test_dev_is_ungated(self):
        assert requires_manual_approval("dev") is False

    @pytest.mark.parametrize("environment", ["qa", "prod"])
    def test_later_environments_are_gated(self, environment):
        assert requires_manual_approval(environment) is True

    def test_unknown_environment_rejected(self):
        with pytest.raises(ValueError):
            requires_manual_approval("staging")


class TestPipelineStageNames:
    def test_dev_has_no_approval(self):
        assert pipeline_stage_names("dev") == ["Pull_Source_Code", "Build", "Deploy"]

    @pytest.mark.parametrize("environment", ["qa", "prod"])
    def test_approval_sits_between_source_and_build(self, environment):
        assert pipeline_stage_names(environment) == [
            "Pull_Source_Code",
            APPROVAL_STAGE,
            "Build",
            "Deploy",
        ]


class TestPlanPromotion:
    def test_stages_follow_promotion_order(self, config_document):
        plan = plan_promotion(config_document)

        assert [s.stage_id for s in plan] == ["Dev", "QA", "Prod"]
        assert [s.environment for s in plan] == ["dev", "qa", "prod"]
        assert plan[1].config is config_document.qa

    def test_every_stage_after_the_first_is_gated(self, config_document):
        plan = plan_promotion(config_document)

        assert [s.gated for s in plan] == [False, True, True]
        assert plan[0].approval_id is None

    def test_approval_comments_name_the_account(self, config_document):
        qa, prod = plan_promotion(config_document)[1:]

        assert qa.approval_id == "ApproveQA"
        assert qa.approval_comment == "Approve deployment of Website to the QA account"
        assert prod.approval_id == "ApproveProd"
        assert prod.approval_comment == (
            "Approve deployment of Website to the Production account"
        )
