"""
Tool Wrapper Registry

Maps a wrapped tool's name to the credentials it needs and how they are
handed to it. Profiles are registered once at startup, from the built-in
set merged with the "tools" section of config, and are read-only after.

Config format:
    "tools": {
        "gh": {
            "program": "gh",
            "strategy": "export",
            "bindings": {"GH_TOKEN": "op://Work/GitHub/token"}
        },
        "git": {
            "strategy": "bridge-file",
            "pointer_var": "GIT_ASKPASS",
            "bindings": [{"destination": "password", "ref": "op://Work/GitHub/token"}]
        }
    }
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .config import DEFAULT_VAULT
from .errors import ProfileError, UnknownTool
from .secrets.interface import SecretRef

logger = logging.getLogger(__name__)

ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class MaterializationStrategy(Enum):
    EXPORT = "export"
    BRIDGE_FILE = "bridge-file"


@dataclass(frozen=True)
class BindingSpec:
    """One secret and where the wrapped tool expects it."""
    ref: SecretRef
    destination: str


@dataclass(frozen=True)
class ToolProfile:
    """Credentials a wrapped tool needs and how they reach it."""
    name: str
    program: str
    bindings: Tuple[BindingSpec, ...]
    strategy: MaterializationStrategy = MaterializationStrategy.EXPORT
    pointer_var: Optional[str] = None
    description: str = ""


BUILTIN_PROFILES: Tuple[ToolProfile, ...] = (
    ToolProfile(
        name="git",
        program="git",
        bindings=(BindingSpec(SecretRef(DEFAULT_VAULT, "GitHub PAT", "credential"), "password"),),
        strategy=MaterializationStrategy.BRIDGE_FILE,
        pointer_var="GIT_ASKPASS",
        description="git over HTTPS; the token is answered through GIT_ASKPASS",
    ),
    ToolProfile(
        name="gh",
        program="gh",
        bindings=(BindingSpec(SecretRef(DEFAULT_VAULT, "GitHub PAT", "credential"), "GH_TOKEN"),),
        description="GitHub CLI",
    ),
    ToolProfile(
        name="aws",
        program="aws",
        bindings=(
            BindingSpec(SecretRef(DEFAULT_VAULT, "AWS Access Key", "access_key_id"), "AWS_ACCESS_KEY_ID"),
            BindingSpec(SecretRef(DEFAULT_VAULT, "AWS Access Key", "secret_access_key"), "AWS_SECRET_ACCESS_KEY"),
        ),
        description="AWS CLI",
    ),
)


def validate_profile(profile: ToolProfile) -> None:
    """
    Check a profile is internally consistent.

    Vault contents are not checked here; a missing item surfaces when the
    scope is built.

    Raises:
        ProfileError: Describing the first problem found
    """
    if not profile.program:
        raise ProfileError(profile.name, "program is empty")
    if not profile.bindings:
        raise ProfileError(profile.name, "at least one binding is required")

    destinations = [b.destination for b in profile.bindings]
    duplicates = sorted({d for d in destinations if destinations.count(d) > 1})
    if duplicates:
        raise ProfileError(profile.name, f"duplicate destination(s): {', '.join(duplicates)}")

    if profile.strategy is MaterializationStrategy.EXPORT:
        for destination in destinations:
            if not ENV_NAME.match(destination):
                raise ProfileError(profile.name, f"not a valid variable name: {destination!r}")
        return

    # Bridge-file: one value behind one pointer variable
    if len(profile.bindings) != 1:
        raise ProfileError(profile.name, "bridge-file strategy takes exactly one binding")
    if not profile.pointer_var or not ENV_NAME.match(profile.pointer_var):
        raise ProfileError(profile.name, "bridge-file strategy needs a valid pointer_var")
    if profile.pointer_var in destinations:
        raise ProfileError(profile.name, f"pointer_var {profile.pointer_var} collides with a destination")


def _parse_bindings(name: str, raw) -> Tuple[BindingSpec, ...]:
    """Accepts {"DEST": "op://..."} or [{"destination": ..., "ref": ...}]."""
    if isinstance(raw, dict):
        pairs = list(raw.items())
    elif isinstance(raw, list):
        try:
            pairs = [(entry["destination"], entry["ref"]) for entry in raw]
        except (KeyError, TypeError) as e:
            raise ProfileError(name, f"each binding needs destination and ref: {e}") from e
    else:
        raise ProfileError(name, "bindings must be an object or a list")

    bindings = []
    for destination, reference in pairs:
        try:
            bindings.append(BindingSpec(SecretRef.parse(reference), destination))
        except (ValueError, AttributeError) as e:
            raise ProfileError(name, str(e)) from e
    return tuple(bindings)


def profile_from_config(name: str, data: dict, base: Optional[ToolProfile] = None) -> ToolProfile:
    """
    Build a profile from a config entry, layered over an existing profile.

    Fields absent from data keep the base profile's values.
    """
    if not isinstance(data, dict):
        raise ProfileError(name, "entry must be an object")

    try:
        strategy = MaterializationStrategy(data["strategy"]) if "strategy" in data else None
    except ValueError as e:
        raise ProfileError(name, f"unknown strategy {data['strategy']!r}") from e

    bindings = _parse_bindings(name, data["bindings"]) if "bindings" in data else None

    if base is None:
        if bindings is None:
            raise ProfileError(name, "bindings are required")
        return ToolProfile(
            name=name,
            program=data.get("program", name),
            bindings=bindings,
            strategy=strategy or MaterializationStrategy.EXPORT,
            pointer_var=data.get("pointer_var"),
            description=data.get("description", ""),
        )

    return ToolProfile(
        name=name,
        program=data.get("program", base.program),
        bindings=bindings if bindings is not None else base.bindings,
        strategy=strategy or base.strategy,
        pointer_var=data.get("pointer_var", base.pointer_var),
        description=data.get("description", base.description),
    )


class ToolRegistry:
    """
    Registered tool profiles, keyed by tool name.

    Profiles are validated on registration; lookups of unregistered names
    raise UnknownTool.
    """

    def __init__(self):
        self._profiles: Dict[str, ToolProfile] = {}

    def register(self, profile: ToolProfile, replace: bool = False) -> None:
        """
        Register a profile.

        Args:
            profile: Profile to add
            replace: Allow overriding an existing profile of the same name

        Raises:
            ProfileError: If invalid or already registered without replace
        """
        validate_profile(profile)
        if profile.name in self._profiles and not replace:
            raise ProfileError(profile.name, "already registered")
        self._profiles[profile.name] = profile
        logger.debug(f"Registered tool profile: {profile.name} ({profile.strategy.value})")

    def resolve(self, name: str) -> ToolProfile:
        """Look up a profile by tool name."""
        try:
            return self._profiles[name]
        except KeyError:
            raise UnknownTool(name, self.names()) from None

    def names(self) -> List[str]:
        return sorted(self._profiles)

    def profiles(self) -> List[ToolProfile]:
        return [self._profiles[name] for name in self.names()]

    def __contains__(self, name: str) -> bool:
        return name in self._profiles

    @classmethod
    def from_config(cls, tools_config: Optional[dict] = None, builtins=BUILTIN_PROFILES) -> "ToolRegistry":
        """
        Registry holding the built-in profiles with config entries layered on top.

        Args:
            tools_config: The "tools" section of config
            builtins: Profiles registered before config is applied
        """
        registry = cls()
        for profile in builtins:
            registry.register(profile)

        for name, data in (tools_config or {}).items():
            base = registry._profiles.get(name)
            registry.register(profile_from_config(name, data, base), replace=True)
            logger.info(f"{'Overrode' if base else 'Added'} tool profile from config: {name}")

        return registry
