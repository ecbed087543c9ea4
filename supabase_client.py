import os
import asyncio
import logging
from typing import Any, Optional

from supabase import create_client, Client, ClientOptions

logger = logging.getLogger(__name__)


class SupabaseNotConfiguredError(RuntimeError):
    """Raised when a query is attempted without Supabase credentials"""


class SupabaseClient:
    def __init__(self):
        self.url = os.getenv("SUPABASE_URL")
        self.anon_key = os.getenv("SUPABASE_ANON_KEY")
        self.service_key = os.getenv(
            "SUPABASE_SERVICE_KEY"
        )  # Server-side reads that bypass RLS

        if not self.url or not self.anon_key:
            logger.warning(
                "Supabase URL or anon key not found in environment variables"
            )
            self.client = None
            self.service_client = None
        else:
            self.client: Client = create_client(self.url, self.anon_key)
            self.service_client: Optional[Client] = (
                create_client(self.url, self.service_key)
                if self.service_key
                else None
            )

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def get_search_client(self, access_token: Optional[str] = None) -> Client:
        """
        Client used for search reads

        When the caller forwarded a bearer token, a client carrying that token
        is created so row level security applies to the caller. Otherwise the
        service client (or the anon client when no service key is set) is used.
        """
        if not self.is_configured:
            raise SupabaseNotConfiguredError("Supabase client not initialized")

        if access_token:
            return create_client(
                self.url,
                self.anon_key,
                options=ClientOptions(
                    headers={"Authorization": f"Bearer {access_token}"}
                ),
            )

        return self.service_client or self.client

    def get_admin_client(self) -> Client:
        """Client for writes that must not depend on the caller (analytics)"""
        if not self.is_configured:
            raise SupabaseNotConfiguredError("Supabase client not initialized")
        return self.service_client or self.client


async def execute_query(query: Any) -> Any:
    """
    Run a built PostgREST query (table or rpc builder) without blocking the
    event loop

    The supabase client is synchronous; running ``execute`` in a worker thread
    lets sibling queries overlap their round trips.
    """
    return await asyncio.to_thread(query.execute)


# Global instance and dependency function
_supabase_client = None


def get_supabase_client() -> SupabaseClient:
    """Get or create global Supabase client instance"""
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = SupabaseClient()
    return _supabase_client
