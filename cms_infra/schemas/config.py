import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ENVIRONMENT_NAMES = ("dev", "qa", "prod")

DEFAULT_BLOCKED_COUNTRIES = ["NZ", "CN", "PL", "US"]


def secret_construct_id(name: str) -> str:
    """``/cms/api-keys`` -> ``CmsApiKeys``"""
    words = re.split(r"[^A-Za-z0-9]+", name)
    return "".join(word[:1].upper() + word[1:] for word in words if word)


class CamelModel(BaseModel):
    """Base for every section of config.yml, whose keys are camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class RepoEntry(CamelModel):
    owner: str = Field(..., examples=["nkhine"])
    repo: str = Field(..., examples=["payloadcms-next"])
    branch: str = Field("main", examples=["main"])
    path: str = Field("", examples=["infra"])
    pipeline_name: Optional[str] = None
    codestar_connection_arn: Optional[str] = None

    @field_validator("owner", "repo", "branch")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class Env(CamelModel):
    name: str
    account: str
    region: str


class AccountConfig(CamelModel):
    id: str = Field(..., examples=["123456789012"])
    name: str

    @field_validator("id", mode="before")
    @classmethod
    def twelve_digits(cls, v: Any) -> str:
        v = str(v).strip()
        if len(v) != 12 or not v.isdigit():
            raise ValueError(f"account id {v!r} must be a 12 digit string")
        return v


class VpcConfig(CamelModel):
    cidr: str = Field(..., examples=["10.10.0.0/16"])
    max_azs: int = Field(2, ge=1, le=6)
    flow_log_bucket_arn: Optional[str] = None
    flow_log_prefix: str = "vpc-flow-logs/"


class AlbConfig(CamelModel):
    certificate: str
    # The CMS answers 404 on /admin behind the ALB, so the target group probes /
    health_check_path: str = "/"
    healthy_http_codes: str = "200,302"


class FargateSecret(CamelModel):
    ssm_parameter: str
    fields: List[str] = Field(default_factory=list)


class FargateConfig(CamelModel):
    env: Dict[str, str] = Field(default_factory=dict)
    secrets: List[FargateSecret] = Field(default_factory=list)
    memory_limit_mib: int = 1024
    desired_count: int = 1


class RedisConfig(CamelModel):
    """Keyword arguments forwarded to ``CfnReplicationGroup``."""

    cache_node_type: str = Field("cache.t3.micro", examples=["cache.t3.micro"])
    engine: str = "redis"
    engine_version: Optional[str] = None
    num_cache_clusters: int = Field(2, ge=2)
    port: Optional[int] = None


class DatabaseConfig(CamelModel):
    instance_class: str = "t3"
    instance_size: str = "medium"
    username: str = "root"
    secret_name: str = "/cms/documentdb/credentials"
    instances: int = Field(2, ge=1)


class WafConfig(CamelModel):
    blocked_countries: List[str] = Field(
        default_factory=lambda: list(DEFAULT_BLOCKED_COUNTRIES)
    )
    restrict_admin_paths: bool = False

    @field_validator("blocked_countries")
    @classmethod
    def upper_case_codes(cls, v: List[str]) -> List[str]:
        return [code.strip().upper() for code in v]


class BastionConfig(CamelModel):
    key_name: Optional[str] = None


class AllowedIpSet(CamelModel):
    ipv4: List[str] = Field(default_factory=list)


class CmsEndpoints(CamelModel):
    public: Optional[str] = None
    private: Optional[str] = None


class TenantApp(CamelModel):
    domain: str = Field(..., examples=["blog.example.com"])
    certificate: str
    repo: RepoEntry
    cms: CmsEndpoints = Field(default_factory=CmsEndpoints)
    app_env: Dict[str, str] = Field(default_factory=dict)
    build_env: Dict[str, str] = Field(default_factory=dict)
    memory_size: int = Field(8096, ge=128, le=10240)

    @field_validator("app_env", "build_env", mode="before")
    @classmethod
    def stringify_values(cls, v: Any) -> Dict[str, str]:
        if v is None:
            return {}
        return {str(key): str(value) for key, value in v.items()}


class AppEnvConfig(CamelModel):
    env: Env
    vpc: VpcConfig
    alb: AlbConfig
    fargate_config: FargateConfig = Field(default_factory=FargateConfig)
    repo: RepoEntry
    codestar_connection_arn: str
    allowed_ip_set: AllowedIpSet = Field(
        default_factory=AllowedIpSet, alias="allowedIPSet"
    )
    redis: RedisConfig = Field(default_factory=RedisConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    waf: WafConfig = Field(default_factory=WafConfig)
    bastion: BastionConfig = Field(default_factory=BastionConfig)
    apps: Dict[str, TenantApp] = Field(default_factory=dict)
    # stack id -> logical id -> {"Property.Path": value}
    overrides: Dict[str, Dict[str, Dict[str, Any]]] = Field(default_factory=dict)

    @field_validator("apps", mode="before")
    @classmethod
    def empty_apps(cls, v: Any) -> Any:
        return v or {}

    @field_validator("apps")
    @classmethod
    def app_names_do_not_shadow_environments(
        cls, v: Dict[str, TenantApp]
    ) -> Dict[str, TenantApp]:
        for name in v:
            if name in ENVIRONMENT_NAMES:
                raise ValueError(
                    f"app name {name!r} collides with the /cms/{name}/ parameters "
                    "of the environment of the same name"
                )
            if not name or "/" in name:
                raise ValueError(f"app name {name!r} is not a valid parameter namespace")
        return v


class CicdConfig(CamelModel):
    env: Env
    repo: RepoEntry
    github_token_arn: Optional[str] = None

    @model_validator(mode="after")
    def has_source_credentials(self) -> "CicdConfig":
        if not self.repo.codestar_connection_arn and not self.github_token_arn:
            raise ValueError(
                "cicd needs either repo.codestarConnectionArn or githubTokenArn"
            )
        return self


class ConfigDocument(CamelModel):
    cicd: CicdConfig
    dev: AppEnvConfig
    qa: AppEnvConfig
    prod: AppEnvConfig
    accounts: List[AccountConfig] = Field(default_factory=list)
    ssms: List[str] = Field(default_factory=list)

    @field_validator("accounts", "ssms", mode="before")
    @classmethod
    def empty_lists(cls, v: Any) -> Any:
        return v or []

    @field_validator("ssms")
    @classmethod
    def distinct_secret_ids(cls, v: List[str]) -> List[str]:
        seen: Dict[str, str] = {}
        for name in v:
            secret_id = secret_construct_id(name)
            if not secret_id:
                raise ValueError(f"secret name {name!r} has no letters or digits")
            if secret_id in seen:
                raise ValueError(
                    f"secret names {seen[secret_id]!r} and {name!r} both map to {secret_id}"
                )
            seen[secret_id] = name
        return v

    def environments(self) -> List[tuple]:
        """(name, config) pairs in promotion order."""
        return [(name, getattr(self, name)) for name in ENVIRONMENT_NAMES]
