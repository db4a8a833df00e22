import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class OptimizedHTTPClient:
    """Bağlantı havuzu ve yeniden deneme mantığı ile paylaşılan HTTP istemcisi"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Daha iyi performans için bağlantı limitleri
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )

        # Zaman aşımı yapılandırması (istek başına geçersiz kılınabilir)
        timeout = httpx.Timeout(
            timeout=10.0,
            connect=5.0,
            read=10.0,
            write=5.0
        )

        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """Bağlantı havuzu ile asenkron GET isteği"""
        return await self._client.get(url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        """Bağlantı havuzu ile asenkron POST isteği"""
        return await self._client.post(url, **kwargs)

    async def get_with_retry(self, url: str, retries: int = 3, backoff: float = 0.5, **kwargs) -> Optional[httpx.Response]:
        """Üstel geri çekilme ile GET isteği. Tüm denemeler ağ hatasıyla biterse None döner."""
        for attempt in range(retries):
            try:
                return await self.get(url, **kwargs)
            except httpx.RequestError as e:
                logger.warning("GET %s failed (attempt %d/%d): %s", url, attempt + 1, retries, e)
                if attempt < retries - 1:
                    await asyncio.sleep(backoff * (2 ** attempt))
        return None

    async def close(self):
        """HTTP istemcisini kapat"""
        await self._client.aclose()


# Global HTTP istemci örneği
_global_client: Optional[OptimizedHTTPClient] = None


async def get_http_client() -> OptimizedHTTPClient:
    """Global HTTP istemci örneğini al veya oluştur"""
    global _global_client
    if _global_client is None:
        _global_client = OptimizedHTTPClient()
    return _global_client


async def cleanup_http_client():
    """Global HTTP istemcisini temizle"""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
