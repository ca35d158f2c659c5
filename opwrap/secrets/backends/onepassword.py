"""
1Password SDK Backend

Implements SecretStore for service accounts using the official SDK.
Suited to CI runners where the op binary is not installed. The SDK
cannot spawn processes, so exports are resolved here and handed to the
child through its spawn environment only.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from onepassword.client import Client

from ... import __version__
from ...errors import SecretResolutionFailed, StoreRejected
from ..interface import Binding, SecretRef, SecretStore, SessionHandle

logger = logging.getLogger(__name__)


class OnePasswordSdkStore(SecretStore):
    """
    1Password backend using onepassword-sdk.

    Config:
        store_timeout: Seconds allowed per SDK round trip (default: 60)
        integration_name: Reported to 1Password (default: "opwrap")
        integration_version: Reported to 1Password (default: package version)
    """

    backend_type = "onepassword"
    supports_interactive = False

    def __init__(self, config: dict):
        super().__init__(config)
        self.timeout = config.get("store_timeout", 60)
        self.integration_name = config.get("integration_name", "opwrap")
        self.integration_version = config.get("integration_version", f"v{__version__}")

    def _call(self, coro):
        """Run one SDK coroutine to completion under the store timeout."""
        return asyncio.run(asyncio.wait_for(coro, self.timeout))

    async def _authenticate(self, token: str) -> Client:
        return await Client.authenticate(
            auth=token,
            integration_name=self.integration_name,
            integration_version=self.integration_version
        )

    async def _resolve(self, token: str, refs: Sequence[SecretRef]) -> List[str]:
        client = await self._authenticate(token)
        values = []
        for ref in refs:
            try:
                values.append(await client.secrets.resolve(ref.uri))
            except Exception as e:
                raise SecretResolutionFailed(ref, str(e)) from e
        return values

    def sign_in(self, account: Optional[str] = None) -> str:
        raise StoreRejected("interactive sign-in is not supported by the onepassword SDK backend; use op-cli")

    def authenticate_service_account(self, token: str) -> None:
        try:
            self._call(self._authenticate(token))
        except asyncio.TimeoutError as e:
            raise StoreRejected(f"authentication timed out after {self.timeout}s") from e
        except Exception as e:
            raise StoreRejected(str(e)) from e

    def validate(self, handle: SessionHandle) -> bool:
        if handle.is_interactive:
            return False
        try:
            self._call(self._authenticate(handle.token))
            return True
        except Exception as e:
            logger.info(f"Service account not accepted by 1Password: {e}")
            return False

    def sign_out(self, handle: SessionHandle) -> None:
        # Service-account sessions end with the client; nothing to revoke.
        pass

    def _resolve_all(self, refs: Sequence[SecretRef], handle: SessionHandle) -> List[str]:
        try:
            return self._call(self._resolve(handle.token, refs))
        except SecretResolutionFailed:
            raise
        except asyncio.TimeoutError as e:
            raise SecretResolutionFailed(refs[0], f"timed out after {self.timeout}s") from e
        except Exception as e:
            raise StoreRejected(str(e)) from e

    def read(self, ref: SecretRef, handle: SessionHandle) -> str:
        return self._resolve_all([ref], handle)[0]

    def run_with_exports(
        self,
        bindings: Sequence[Binding],
        argv: List[str],
        handle: SessionHandle
    ) -> Tuple[List[str], Dict[str, str]]:
        values = self._resolve_all([ref for _, ref in bindings], handle)
        additions = {destination: value for (destination, _), value in zip(bindings, values)}
        return list(argv), additions
