from unittest.mock import MagicMock, patch

import pytest

from cms_infra.lambdas import updater

FUNCTION_ARN = "arn:aws:lambda:eu-west-1:222222222222:function:cms-blog-app"
EVENT = {"CodePipeline.job": {"id": "job-1"}}


def make_ssm(values):
    ssm = MagicMock()
    ssm.get_parameter.side_effect = lambda Name: {"Parameter": {"Value": values[Name]}}
    return ssm


def make_lambda_client(version="7"):
    client = MagicMock()
    client.publish_version.return_value = {"Version": version}
    return client


@pytest.fixture
def lambda_env(monkeypatch):
    monkeypatch.setenv("REGION", "eu-west-1")
    monkeypatch.setenv("FUNCTION_ARN", FUNCTION_ARN)
    monkeypatch.setenv("IMAGE_PARAMETER_NAME", "/cms/blog/repository-name")
    monkeypatch.setenv("IMAGE_TAG_PARAMETER_NAME", "/cms/blog/release-tag")


class TestImageUri:
    def test_uri_in_function_account_and_region(self):
        assert updater.image_uri(FUNCTION_ARN, "blog", "a1b2c3d") == (
            "222222222222.dkr.ecr.eu-west-1.amazonaws.com/blog:a1b2c3d"
        )

    def test_non_lambda_arn_rejected(self):
        with pytest.raises(ValueError):
            updater.image_uri("arn:aws:s3:::bucket", "blog", "latest")


class TestReleaseImage:
    def test_updates_code_waits_then_publishes(self):
        ssm = make_ssm({"/cms/blog/repository-name": "blog", "/cms/blog/release-tag": "a1b2c3d"})
        client = make_lambda_client()

        result = updater.release_image(
            ssm, client, FUNCTION_ARN, "/cms/blog/repository-name", "/cms/blog/release-tag"
        )

        uri = "222222222222.dkr.ecr.eu-west-1.amazonaws.com/blog:a1b2c3d"
        client.update_function_code.assert_called_once_with(
            FunctionName=FUNCTION_ARN, ImageUri=uri
        )
        client.get_waiter.assert_called_once_with("function_updated")
        client.get_waiter.return_value.wait.assert_called_once_with(FunctionName=FUNCTION_ARN)
        client.publish_version.assert_called_once_with(
            FunctionName=FUNCTION_ARN, Description="blog:a1b2c3d"
        )
        assert result == {"imageUri": uri, "version": "7"}


class TestHandler:
    def test_success_reported_to_pipeline(self, lambda_env):
        codepipeline = MagicMock()
        ssm = make_ssm({"/cms/blog/repository-name": "blog", "/cms/blog/release-tag": "a1b2c3d"})
        clients = {"codepipeline": codepipeline, "ssm": ssm, "lambda": make_lambda_client("3")}

        with patch.object(updater.boto3, "client", side_effect=lambda name, **kw: clients[name]):
            result = updater.handler(EVENT, None)

        assert result["status"] == "released"
        assert result["version"] == "3"
        codepipeline.put_job_success_result.assert_called_once()
        assert codepipeline.put_job_success_result.call_args.kwargs["jobId"] == "job-1"
        codepipeline.put_job_failure_result.assert_not_called()

    def test_failure_reported_to_pipeline(self, lambda_env):
        codepipeline = MagicMock()
        ssm = MagicMock()
        ssm.get_parameter.side_effect = RuntimeError("parameter missing")
        clients = {"codepipeline": codepipeline, "ssm": ssm, "lambda": make_lambda_client()}

        with patch.object(updater.boto3, "client", side_effect=lambda name, **kw: clients[name]):
            result = updater.handler(EVENT, None)

        assert result["status"] == "failed"
        codepipeline.put_job_failure_result.assert_called_once()
        details = codepipeline.put_job_failure_result.call_args.kwargs["failureDetails"]
        assert details["type"] == "JobFailed"
        assert "parameter missing" in details["message"]
        codepipeline.put_job_success_result.assert_not_called()
