"""
Secret Store Interface

Defines the abstract interface for secret-store backends and the value
types that cross it: vault references and session handles.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class SecretRef:
    """Structured locator of one field in the secret store."""
    vault: str
    item: str
    field: str

    @property
    def uri(self) -> str:
        return f"op://{self.vault}/{self.item}/{self.field}"

    @classmethod
    def parse(cls, reference: str) -> "SecretRef":
        """
        Parse an op://vault/item/field reference.

        Raises:
            ValueError: If the reference is not of that shape
        """
        if not reference.startswith("op://"):
            raise ValueError(f"Invalid 1Password reference format: {reference}")
        parts = reference[len("op://"):].split("/")
        if len(parts) != 3 or not all(p.strip() for p in parts):
            raise ValueError(f"Expected op://vault/item/field, got: {reference}")
        return cls(vault=parts[0], item=parts[1], field=parts[2])

    def __str__(self) -> str:
        return self.uri


class SessionSource(Enum):
    INTERACTIVE = "interactive"
    SERVICE_ACCOUNT = "service_account"


@dataclass(frozen=True)
class SessionHandle:
    """
    Proof of a successful authentication against the secret store.

    Immutable: renewal produces a new handle. The token is kept out of
    repr so handles can be logged safely.
    """
    token: str = field(repr=False)
    source: SessionSource
    acquired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cached: bool = False
    account: Optional[str] = None

    @property
    def is_interactive(self) -> bool:
        return self.source is SessionSource.INTERACTIVE


Binding = Tuple[str, SecretRef]  # (destination name, reference)


class SecretStore(ABC):
    """
    Abstract base class for secret-store backends.

    Implementations wrap a specific client (the op CLI, the 1Password
    SDK, ...). opwrap only ever asks a backend to authenticate, to read
    one value, or to build a command that resolves exports at spawn time.
    """

    backend_type: str = "base"
    supports_interactive: bool = True

    def __init__(self, config: dict):
        """
        Initialize the backend.

        Args:
            config: Backend-specific configuration dict
        """
        self.config = config

    @abstractmethod
    def sign_in(self, account: Optional[str] = None) -> str:
        """
        Authenticate interactively. May prompt a human.

        Args:
            account: Account shorthand or sign-in address (default: store default)

        Returns:
            A session token

        Raises:
            StoreRejected: With the store's reason when sign-in fails
        """
        pass

    @abstractmethod
    def authenticate_service_account(self, token: str) -> None:
        """
        Check a pre-provisioned service-account token with the store.

        Raises:
            StoreRejected: If the store refuses the token
        """
        pass

    @abstractmethod
    def validate(self, handle: SessionHandle) -> bool:
        """
        Live round trip: is this session still accepted by the store?

        Never raises for a rejected or expired session; returns False.
        """
        pass

    @abstractmethod
    def sign_out(self, handle: SessionHandle) -> None:
        """End the session at the store. Safe to call on an expired handle."""
        pass

    @abstractmethod
    def read(self, ref: SecretRef, handle: SessionHandle) -> str:
        """
        Read one secret value.

        Args:
            ref: Reference to read
            handle: A validated session

        Returns:
            The secret value

        Raises:
            SecretResolutionFailed: If the vault, item or field is missing
        """
        pass

    @abstractmethod
    def run_with_exports(
        self,
        bindings: Sequence[Binding],
        argv: List[str],
        handle: SessionHandle
    ) -> Tuple[List[str], Dict[str, str]]:
        """
        Build the command that runs argv with bindings exported.

        Args:
            bindings: (destination, reference) pairs
            argv: The wrapped command, passed through unchanged
            handle: A validated session

        Returns:
            (argv to spawn, environment additions for the spawned process)
        """
        pass
