"""CodeBuild buildspecs for image releases.

Every release build logs into ECR, tags the image with the short commit hash,
pushes ``:latest`` and ``:<tag>`` and then overwrites the deployable's four
release parameters. Values such as the repository URI may be CDK tokens; they
are only ever interpolated into strings.
"""

import dataclasses
import shlex
from typing import Any, Dict, List, Mapping, Optional

from cms_infra.release.parameters import ReleaseParameterNames

IMAGE_TAG_LENGTH = 7
FALLBACK_IMAGE_TAG = "latest"

DOCDB_CA_BUNDLE_URL = "https://s3.amazonaws.com/rds-downloads/rds-combined-ca-bundle.pem"

IMAGE_DEFINITIONS_FILE = "imagedefinitions.json"


def image_tag_for(revision: Optional[str]) -> str:
    """Python rendition of the tag the pre_build phase computes in shell."""
    short = (revision or "")[:IMAGE_TAG_LENGTH]
    return short or FALLBACK_IMAGE_TAG


def escape_sed_value(value: str) -> str:
    """Escape a literal for the replacement side of ``s/.../.../``."""
    return value.replace("\\", "\\\\").replace("&", "\\&").replace("/", "\\/")


def escape_sed_pattern(text: str) -> str:
    """Escape a literal for a basic regular expression delimited by ``/``."""
    return "".join("\\" + char if char in "\\/.*[]^$" else char for char in text)


def env_rewrite_expression(key: str, value: str) -> str:
    return f"s/^{escape_sed_pattern(key)}=.*/{escape_sed_value(key)}={escape_sed_value(value)}/"


def build_env_commands(build_env: Mapping[str, str]) -> List[str]:
    """One in-place rewrite of the ``KEY=...`` line in the checked out ``.env`` per variable.

    Only a line starting with exactly ``KEY=`` is touched. Keys missing from
    ``.env`` are left absent and a missing ``.env`` is not an error.
    """
    return [
        f"sed -i {shlex.quote(env_rewrite_expression(key, value))} "
        "$CODEBUILD_SRC_DIR/.env || true"
        for key, value in build_env.items()
    ]


def image_tag_commands() -> List[str]:
    return [
        f"COMMIT_HASH=$(echo $CODEBUILD_RESOLVED_SOURCE_VERSION | cut -c 1-{IMAGE_TAG_LENGTH})",
        f"IMAGE_TAG=${{COMMIT_HASH:={FALLBACK_IMAGE_TAG}}}",
    ]


def parameter_update_commands(
    region: str,
    parameters: ReleaseParameterNames,
    repository_arn: str,
    repository_name: str,
) -> List[str]:
    """Overwrite the four release parameters. Each write is atomic, the group is not."""
    put = f"aws ssm put-parameter --overwrite --region {region}"
    return [
        f"{put} --name {parameters.release_tag} --value $IMAGE_TAG",
        f"{put} --name {parameters.repository_arn} --value {repository_arn}",
        f"{put} --name {parameters.repository_name} --value {repository_name}",
        f"{put} --name {parameters.package_version} --value $PACKAGE_VERSION",
    ]


@dataclasses.dataclass
class ImageBuild:
    region: str
    account: str
    repository_uri: str
    repository_arn: str
    repository_name: str
    parameters: ReleaseParameterNames
    build_env: Mapping[str, str] = dataclasses.field(default_factory=dict)
    docker_build_args: Mapping[str, str] = dataclasses.field(default_factory=dict)
    setup_commands: List[str] = dataclasses.field(default_factory=list)
    # When set, an imagedefinitions.json for this container is emitted for ECS deploys
    container_name: Optional[str] = None
    dockerfile: str = "Dockerfile"


def render_buildspec(build: ImageBuild) -> Dict[str, Any]:
    registry = f"{build.account}.dkr.ecr.{build.region}.amazonaws.com"
    build_args = "".join(
        f" --build-arg={name}={value}" for name, value in build.docker_build_args.items()
    )

    post_build = [
        f"docker push {build.repository_uri}:latest",
        f"docker push {build.repository_uri}:$IMAGE_TAG",
        *parameter_update_commands(
            build.region,
            build.parameters,
            build.repository_arn,
            build.repository_name,
        ),
    ]

    spec: Dict[str, Any] = {
        "version": "0.2",
        "env": {"shell": "bash"},
        "phases": {
            "pre_build": {
                "commands": [
                    "echo Logging into ECR",
                    f"aws ecr get-login-password --region {build.region} | "
                    f"docker login --username AWS --password-stdin {registry}",
                    *image_tag_commands(),
                    # -e fails the build when package.json has no version
                    "PACKAGE_VERSION=$(jq -er .version $CODEBUILD_SRC_DIR/package.json)",
                ],
            },
            "build": {
                "commands": [
                    # .env is copied into the image and read at build time
                    *build_env_commands(build.build_env),
                    *build.setup_commands,
                    f"docker build{build_args} -f {build.dockerfile} "
                    f"-t {build.repository_uri}:latest $CODEBUILD_SRC_DIR",
                    f"docker tag {build.repository_uri}:latest {build.repository_uri}:$IMAGE_TAG",
                ],
            },
            "post_build": {"commands": post_build},
        },
    }

    if build.container_name:
        post_build.append(
            f'printf \'[{{"name":"{build.container_name}","imageUri":"%s"}}]\' '
            f'"{build.repository_uri}:$IMAGE_TAG" > {IMAGE_DEFINITIONS_FILE}'
        )
        spec["artifacts"] = {"files": [IMAGE_DEFINITIONS_FILE]}

    return spec


def service_image_build(
    region: str,
    account: str,
    repository_uri: str,
    repository_arn: str,
    repository_name: str,
    parameters: ReleaseParameterNames,
    container_name: str,
) -> ImageBuild:
    """Build of the primary CMS image, which talks TLS to DocumentDB."""
    return ImageBuild(
        region=region,
        account=account,
        repository_uri=repository_uri,
        repository_arn=repository_arn,
        repository_name=repository_name,
        parameters=parameters,
        docker_build_args={"RDS_CA_LOCATION": "rdsCA.pem"},
        setup_commands=[f"curl -o rdsCA.pem {DOCDB_CA_BUNDLE_URL}"],
        container_name=container_name,
    )
