import json
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from jose import jwt

from librarycard.config import settings
from librarycard.exceptions import InvalidRequest, ServiceUnavailable, UpstreamServiceError
from librarycard.services.http_client import OptimizedHTTPClient, get_http_client

logger = logging.getLogger(__name__)

VISION_URL = "https://vision.googleapis.com/v1/images:annotate"
TOKEN_URL = "https://oauth2.googleapis.com/token"
SCOPE = "https://www.googleapis.com/auth/cloud-platform"


def strip_data_url(image: str) -> str:
    """Remove a ``data:image/...;base64,`` prefix if present."""
    if image.startswith("data:") and "," in image:
        return image.split(",", 1)[1]
    return image


def _bounding_box(vertices: List[Dict[str, Any]]) -> Optional[Dict[str, int]]:
    if len(vertices) < 2:
        return None
    xs = [v.get("x", 0) for v in vertices]
    ys = [v.get("y", 0) for v in vertices]
    return {"x": min(xs), "y": min(ys), "width": max(xs) - min(xs), "height": max(ys) - min(ys)}


class VisionService:
    """Google Vision TEXT_DETECTION with an API key or a service account."""

    def __init__(
        self,
        client: Optional[OptimizedHTTPClient] = None,
        api_key: Optional[str] = None,
        service_account_json: Optional[str] = None,
    ):
        self._client = client
        self.api_key = api_key if api_key is not None else settings.google_vision_api_key
        self.service_account_json = (
            service_account_json if service_account_json is not None else settings.google_service_account_json
        )
        self._access_token: Optional[str] = None
        self._access_token_expires = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key or self.service_account_json)

    async def _http(self) -> OptimizedHTTPClient:
        if self._client is None:
            self._client = await get_http_client()
        return self._client

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        client = await self._http()
        try:
            return await client.post(url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Request to %s failed: %s", url, e)
            raise UpstreamServiceError("Google Vision API unreachable") from e

    async def _service_account_token(self) -> str:
        if self._access_token and time.time() < self._access_token_expires - 60:
            return self._access_token

        try:
            credentials = json.loads(self.service_account_json)
        except ValueError as e:
            raise ServiceUnavailable("Google service account credentials are not valid JSON") from e
        # Some exported credential files nest the key under "web"
        creds = credentials.get("web", credentials)
        if not creds.get("private_key") or not creds.get("client_email"):
            raise ServiceUnavailable("Google service account credentials are incomplete")

        now = int(time.time())
        assertion = jwt.encode(
            {"iss": creds["client_email"], "scope": SCOPE, "aud": TOKEN_URL, "iat": now, "exp": now + 3600},
            creds["private_key"].replace("\\n", "\n"),
            algorithm="RS256",
            headers={"kid": creds.get("private_key_id")} if creds.get("private_key_id") else None,
        )

        resp = await self._post(
            TOKEN_URL,
            data={"grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer", "assertion": assertion},
            timeout=settings.google_vision_timeout,
        )
        if resp.status_code != 200:
            logger.error("Service account token exchange failed: HTTP %s", resp.status_code)
            raise UpstreamServiceError("Failed to obtain Google access token")

        token_data = resp.json()
        self._access_token = token_data["access_token"]
        self._access_token_expires = time.time() + int(token_data.get("expires_in", 3600))
        return self._access_token

    async def detect_text(self, image: str) -> Dict[str, Any]:
        """Run text detection on a base64 image.

        The first annotation is the whole-image text block and is skipped;
        every other annotation becomes one ``detectedText`` entry.
        """
        if not image:
            raise InvalidRequest("No image data provided")
        if not self.configured:
            raise ServiceUnavailable("Google Vision API is not configured")

        body = {
            "requests": [{
                "image": {"content": strip_data_url(image)},
                "features": [{"type": "TEXT_DETECTION", "maxResults": 50}],
            }]
        }
        params = {}
        headers = {}
        if self.api_key:
            params["key"] = self.api_key
        else:
            headers["Authorization"] = f"Bearer {await self._service_account_token()}"

        resp = await self._post(VISION_URL, json=body, params=params, headers=headers, timeout=settings.google_vision_timeout)
        if resp.status_code != 200:
            logger.error("Google Vision returned HTTP %s", resp.status_code)
            raise UpstreamServiceError(f"Google Vision API error: {resp.status_code}")

        responses = resp.json().get("responses") or [{}]
        result = responses[0]
        if result.get("error"):
            raise UpstreamServiceError(result["error"].get("message", "Google Vision API error"))

        detected = []
        for annotation in (result.get("textAnnotations") or [])[1:]:
            entry = {"text": annotation.get("description", ""), "confidence": annotation.get("confidence") or 0}
            box = _bounding_box((annotation.get("boundingPoly") or {}).get("vertices") or [])
            if box:
                entry["boundingBox"] = box
            detected.append(entry)
        return {"detectedText": detected, "processedCount": len(detected)}
