"""Resolution of the provider credential used for a workspace's model calls."""

import logging

from pydantic import BaseModel

from chronomem.storage.sqlite import SQLiteStorage

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "ollama"


class ResolvedCredential(BaseModel):
    """The key to call a provider with, and whether the workspace owns it.

    Attributes:
        api_key: Key to send, or None for an unauthenticated local server.
        uses_byok: True when the key belongs to the workspace, in which case
            the platform does not charge credits for the call.
    """

    api_key: str | None = None
    uses_byok: bool = False


class CredentialResolver:
    """Looks up bring-your-own-key credentials, falling back to the platform key."""

    def __init__(
        self,
        storage: SQLiteStorage,
        platform_api_key: str | None = None,
        provider: str = DEFAULT_PROVIDER,
    ):
        self.storage = storage
        self.platform_api_key = platform_api_key
        self.provider = provider

    async def resolve(self, workspace_id: str) -> ResolvedCredential:
        row = await self.storage.fetch_one(
            "SELECT api_key FROM workspace_api_keys WHERE workspace_id = ? AND provider = ?",
            (workspace_id, self.provider),
        )
        if row and row["api_key"]:
            logger.debug(f"Using workspace key for {workspace_id} ({self.provider})")
            return ResolvedCredential(api_key=row["api_key"], uses_byok=True)
        return ResolvedCredential(api_key=self.platform_api_key, uses_byok=False)

    async def set_workspace_key(self, workspace_id: str, api_key: str) -> None:
        """Store or replace a workspace's own key for this provider."""
        await self.storage.execute(
            "INSERT INTO workspace_api_keys (workspace_id, provider, api_key) VALUES (?, ?, ?) "
            "ON CONFLICT(workspace_id, provider) DO UPDATE SET api_key = excluded.api_key",
            (workspace_id, self.provider, api_key),
        )
        logger.info(f"Stored {self.provider} key for workspace {workspace_id}")
