from typing import Any, Dict, Optional, Tuple

import httpx

from .config import Settings


class GraphAPIError(Exception):
    """Raised when a WhatsApp Cloud API call fails."""


class MediaFetchError(GraphAPIError):
    """Raised when a media id cannot be turned into bytes."""


class GraphAPIClient:
    def __init__(
        self,
        base_url: str = "https://graph.facebook.com",
        api_version: str = "v19.0",
        access_token: str = "",
        phone_number_id: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraphAPIClient":
        return cls(
            base_url=settings.graph_base_url,
            api_version=settings.graph_api_version,
            access_token=settings.access_token,
            phone_number_id=settings.phone_number_id,
        )

    @classmethod
    def from_env(cls) -> "GraphAPIClient":
        return cls.from_settings(Settings.from_env())

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.api_version}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self.transport, follow_redirects=True)

    async def fetch_media(self, media_id: str) -> Tuple[bytes, str]:
        """
        Two-step download: resolve the media id to a short-lived URL, then fetch
        that URL with the same bearer token. Returns (bytes, mime type).
        """
        if not self.access_token:
            raise MediaFetchError("WHATSAPP_TOKEN not configured")
        if not media_id:
            raise MediaFetchError("empty media id")
        try:
            async with self._client(timeout=120) as client:
                meta_resp = await client.get(self._url(media_id), headers=self._headers())
                meta_resp.raise_for_status()
                meta: Dict[str, Any] = meta_resp.json()
                url = meta.get("url") if isinstance(meta, dict) else None
                if not url:
                    raise MediaFetchError(f"no download url for media {media_id}")
                mime_type = str(meta.get("mime_type") or "application/octet-stream")

                data_resp = await client.get(url, headers=self._headers())
                data_resp.raise_for_status()
                content_type = data_resp.headers.get("content-type", "")
                if mime_type == "application/octet-stream" and content_type:
                    mime_type = content_type.split(";", 1)[0].strip()
                return data_resp.content, mime_type
        except httpx.HTTPStatusError as e:
            raise MediaFetchError(f"media {media_id}: HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise MediaFetchError(f"media {media_id}: {e}") from e

    async def send_text(self, to: str, body: str) -> Dict[str, Any]:
        if not self.access_token or not self.phone_number_id:
            raise GraphAPIError("WHATSAPP_TOKEN and WHATSAPP_PHONE_NUMBER_ID required to send messages")
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        try:
            async with self._client() as client:
                resp = await client.post(self._url(f"{self.phone_number_id}/messages"), json=payload, headers=self._headers())
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as e:
            raise GraphAPIError(f"send_text: HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise GraphAPIError(f"send_text: {e}") from e
