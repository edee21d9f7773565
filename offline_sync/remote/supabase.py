from typing import Optional

import httpx

from ..errors import RemoteWriteError
from ..models import OfflineMessage
from .base import RemoteMessageWriter


class SupabaseMessageWriter(RemoteMessageWriter):
    """Writes messages through the Supabase PostgREST endpoint.

    The insert is keyed on ``id`` with ``resolution=ignore-duplicates``, so a
    retry after a lost response does not create a second row.
    """

    provider_name: str = "supabase"

    def __init__(self, base_url: str, anon_key: str, timeout: float = 10.0):
        if not base_url:
            raise RuntimeError("SUPABASE_URL is required for the supabase writer")
        self._url = base_url.rstrip("/") + "/rest/v1/messages"
        self._anon_key = anon_key
        self._timeout = timeout

    async def write_message(
        self,
        message: OfflineMessage,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> None:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
            "Content-Type": "application/json",
            "Prefer": "resolution=ignore-duplicates,return=minimal",
        }
        row = message.to_remote_row(user_id)
        # Use a short-lived AsyncClient per request to ensure proper cleanup
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, params={"on_conflict": "id"}, headers=headers, json=row)
        except httpx.HTTPError as e:
            raise RemoteWriteError(message.id, f"{type(e).__name__}: {e}") from e
        # 409: primary key already present, i.e. an earlier attempt landed
        if resp.status_code < 300 or resp.status_code == 409:
            return
        raise RemoteWriteError(message.id, (resp.text or "")[:200], status_code=resp.status_code)
