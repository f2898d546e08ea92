"""Shared pytest fixtures."""

import copy

import pytest

from cms_infra.services.config_loader import parse_config

ACCOUNTS = {"cicd": "111111111111", "dev": "222222222222", "qa": "333333333333", "prod": "444444444444"}
REGION = "eu-west-1"


def make_app(name: str, repo: str = None) -> dict:
    return {
        "domain": f"{name}.example.com",
        "certificate": f"arn:aws:acm:{REGION}:222222222222:certificate/{name}",
        "repo": {"owner": "nkhine", "repo": repo or f"payloadcms-{name}", "branch": "main"},
        "cms": {"public": "https://cms.example.com", "private": "http://payload.cms.arpa:3000"},
        "appEnv": {"NODE_ENV": "production"},
        "buildEnv": {"NEXT_PUBLIC_CMS_URL": "https://cms.example.com/api"},
    }


def make_environment(name: str, cidr: str, apps: dict = None) -> dict:
    account = ACCOUNTS[name]
    return {
        "env": {"name": name, "account": account, "region": REGION},
        "vpc": {"cidr": cidr},
        "alb": {"certificate": f"arn:aws:acm:{REGION}:{account}:certificate/cms"},
        "fargateConfig": {"env": {"PAYLOAD_PUBLIC_SERVER_URL": f"https://cms.{name}.example.com"}},
        "repo": {"owner": "nkhine", "repo": "payloadcms-next", "branch": "main"},
        "codestarConnectionArn": (
            f"arn:aws:codestar-connections:{REGION}:{account}:connection/{name}"
        ),
        "allowedIPSet": {"ipv4": ["203.0.113.0/24"]},
        "apps": apps or {},
    }


def make_config_payload(**overrides) -> dict:
    payload = {
        "cicd": {
            "env": {"name": "cicd", "account": ACCOUNTS["cicd"], "region": REGION},
            "repo": {
                "owner": "nkhine",
                "repo": "payloadcms-infra",
                "branch": "main",
                "pipelineName": "payloadcms-infra",
                "codestarConnectionArn": (
                    f"arn:aws:codestar-connections:{REGION}:111111111111:connection/cicd"
                ),
            },
        },
        "dev": make_environment("dev", "10.10.0.0/16"),
        "qa": make_environment("qa", "10.20.0.0/16"),
        "prod": make_environment("prod", "10.30.0.0/16"),
        "accounts": [
            {"id": ACCOUNTS[name], "name": name} for name in ("dev", "qa", "prod")
        ],
        "ssms": ["/cms/api-keys"],
    }
    payload.update(copy.deepcopy(overrides))
    return payload


@pytest.fixture
def config_payload():
    return make_config_payload()


@pytest.fixture
def config_document(config_payload):
    return parse_config(config_payload)


@pytest.fixture
def tenant_document():
    """Dev environment with the two tenants blog and docs."""
    return parse_config(
        make_config_payload(
            dev=make_environment(
                "dev", "10.10.0.0/16", apps={"blog": make_app("blog"), "docs": make_app("docs")}
            )
        )
    )


@pytest.fixture
def qa_tenant_document():
    """QA environment with the tenant blog."""
    return parse_config(
        make_config_payload(
            qa=make_environment("qa", "10.20.0.0/16", apps={"blog": make_app("blog")})
        )
    )
