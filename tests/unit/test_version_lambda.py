import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from cms_infra.lambdas import version


def client_error(operation="GetParameter"):
    return ClientError({"Error": {"Code": "ParameterNotFound", "Message": "not found"}}, operation)


@pytest.fixture
def lambda_env(monkeypatch):
    monkeypatch.setenv("REGION", "eu-west-1")
    monkeypatch.setenv("IMAGE_TAG_PARAMETER_NAME", "/cms/blog/release-tag")
    monkeypatch.setenv("VERSION_PARAMETER_NAME", "/cms/blog/package-version")


def invoke(ssm):
    with patch.object(version.boto3, "client", return_value=ssm):
        return version.handler({"httpMethod": "GET", "path": "/version"}, None)


class TestVersionHandler:
    def test_returns_commit_and_version(self, lambda_env):
        values = {"/cms/blog/release-tag": "a1b2c3d", "/cms/blog/package-version": "1.4.0"}
        ssm = MagicMock()
        ssm.get_parameter.side_effect = lambda Name: {"Parameter": {"Value": values[Name]}}

        response = invoke(ssm)

        assert response["statusCode"] == 200
        assert response["headers"]["Content-Type"] == "application/json"
        assert json.loads(response["body"]) == {"commit": "a1b2c3d", "version": "1.4.0"}

    def test_unseeded_version_is_returned_as_is(self, lambda_env):
        ssm = MagicMock()
        ssm.get_parameter.return_value = {"Parameter": {"Value": "version"}}

        body = json.loads(invoke(ssm)["body"])
        assert body["version"] == "version"

    def test_tag_lookup_failure_is_500(self, lambda_env):
        ssm = MagicMock()
        ssm.get_parameter.side_effect = client_error()

        response = invoke(ssm)

        assert response["statusCode"] == 500
        assert response["body"].startswith("error in retrieving git hash")

    def test_version_lookup_failure_is_500(self, lambda_env):
        ssm = MagicMock()
        ssm.get_parameter.side_effect = [
            {"Parameter": {"Value": "a1b2c3d"}},
            client_error(),
        ]

        response = invoke(ssm)

        assert response["statusCode"] == 500
        assert response["body"].startswith("error in retrieving version")
