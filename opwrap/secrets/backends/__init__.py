"""
Secret Store Backends

Available backends for the secret store.
"""

from .onepassword import OnePasswordSdkStore
from .op_cli import OpCliStore

# Registry of available backends
BACKENDS = {
    "op-cli": OpCliStore,
    "onepassword": OnePasswordSdkStore,
    "1password": OnePasswordSdkStore,  # Alias
}

__all__ = ["BACKENDS", "OpCliStore", "OnePasswordSdkStore"]
