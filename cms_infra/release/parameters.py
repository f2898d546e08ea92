"""Names of the four release parameters each deployable owns in SSM.

The build pipeline of a deployable overwrites these after every successful
image push and the runtime resolves its image through them, so neither side
needs a reference to the other.
"""

import dataclasses
from typing import Dict, Iterator

PARAMETER_ROOT = "/cms"

REPOSITORY_ARN = "repository-arn"
REPOSITORY_NAME = "repository-name"
RELEASE_TAG = "release-tag"
PACKAGE_VERSION = "package-version"

SLOTS = (REPOSITORY_ARN, REPOSITORY_NAME, RELEASE_TAG, PACKAGE_VERSION)

# Seed value of package-version until the first build writes the real one
PACKAGE_VERSION_PLACEHOLDER = "version"


@dataclasses.dataclass(frozen=True)
class ReleaseParameterNames:
    namespace: str
    repository_arn: str
    repository_name: str
    release_tag: str
    package_version: str

    @classmethod
    def for_deployable(cls, namespace: str) -> "ReleaseParameterNames":
        if not namespace or "/" in namespace:
            raise ValueError(f"invalid parameter namespace {namespace!r}")
        prefix = f"{PARAMETER_ROOT}/{namespace}"
        return cls(
            namespace=namespace,
            repository_arn=f"{prefix}/{REPOSITORY_ARN}",
            repository_name=f"{prefix}/{REPOSITORY_NAME}",
            release_tag=f"{prefix}/{RELEASE_TAG}",
            package_version=f"{prefix}/{PACKAGE_VERSION}",
        )

    def by_slot(self) -> Dict[str, str]:
        return {
            REPOSITORY_ARN: self.repository_arn,
            REPOSITORY_NAME: self.repository_name,
            RELEASE_TAG: self.release_tag,
            PACKAGE_VERSION: self.package_version,
        }

    def __iter__(self) -> Iterator[str]:
        return iter(self.by_slot().values())
