"""
Secret Store Module

Access to the external secret store for the session manager and the
scope builder. Backends are selected by name from config:

    {
        "backends": {
            "local": {"adapter": "op-cli"},
            "ci": {"adapter": "onepassword"}
        }
    }
"""

from ..errors import ConfigError
from .interface import Binding, SecretRef, SecretStore, SessionHandle, SessionSource
from .backends import BACKENDS


def create_store(backend_config: dict) -> SecretStore:
    """
    Instantiate the backend named by backend_config["adapter"].

    Raises:
        ConfigError: If no backend has that name
    """
    adapter_type = backend_config.get("adapter", "op-cli")
    if adapter_type not in BACKENDS:
        raise ConfigError(
            f"Unknown backend adapter type: {adapter_type} (known: {', '.join(sorted(BACKENDS))})"
        )
    return BACKENDS[adapter_type](backend_config)


__all__ = [
    "BACKENDS",
    "Binding",
    "SecretRef",
    "SecretStore",
    "SessionHandle",
    "SessionSource",
    "create_store",
]
