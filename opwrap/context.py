"""
Execution Context Classifier

Maps the current process environment to where opwrap is running: a
developer machine (local) or a specific automation platform (ci).

Usage:
    from opwrap.context import classify

    context = classify()
    if context.is_local:
        ...
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence, Tuple


class ContextKind(Enum):
    LOCAL = "local"
    CI = "ci"


@dataclass(frozen=True)
class ExecutionContext:
    """Where the current invocation runs."""
    kind: ContextKind
    platform: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.kind is ContextKind.LOCAL

    def __str__(self) -> str:
        if self.is_local:
            return "local"
        return f"ci({self.platform})"


LOCAL = ExecutionContext(ContextKind.LOCAL)

# One unambiguous presence signal per platform, checked in this order.
# Adding a platform is adding a row here.
PLATFORM_SIGNALS: Sequence[Tuple[str, str]] = (
    ("GITHUB_ACTIONS", "github_actions"),
    ("GITLAB_CI", "gitlab_ci"),
    ("CIRCLECI", "circleci"),
    ("BUILDKITE", "buildkite"),
    ("TF_BUILD", "azure_pipelines"),
    ("BITBUCKET_BUILD_NUMBER", "bitbucket_pipelines"),
    ("CODEBUILD_BUILD_ID", "aws_codebuild"),
    ("JENKINS_URL", "jenkins"),
    ("TRAVIS", "travis"),
)


def classify(
    environ: Optional[Mapping[str, str]] = None,
    signals: Iterable[Tuple[str, str]] = PLATFORM_SIGNALS
) -> ExecutionContext:
    """
    Classify the execution context.

    Total and side-effect free: falls back to local when no platform
    signal is present.

    Args:
        environ: Environment to inspect (default: os.environ)
        signals: Ordered (env_var, platform_tag) pairs; first match wins

    Returns:
        The ExecutionContext for this invocation
    """
    env = os.environ if environ is None else environ
    for env_var, platform in signals:
        if env.get(env_var):
            return ExecutionContext(ContextKind.CI, platform)
    return LOCAL


def signals_with_extras(extra: Optional[Mapping[str, str]] = None) -> Tuple[Tuple[str, str], ...]:
    """Built-in signals followed by config-supplied ones ({env_var: tag})."""
    merged = tuple(PLATFORM_SIGNALS)
    if extra:
        merged += tuple((env_var, tag) for env_var, tag in extra.items())
    return merged
