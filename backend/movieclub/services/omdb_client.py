"""
OMDb client for MovieClub.
- Async httpx client owned by the instance; close with aclose().
- One request per lookup: no retries, no caching.
- Every failure mode surfaces as MetadataUnavailable, never as partial data.
"""
import logging
from typing import Dict, Optional

import httpx

from movieclub.errors import MetadataUnavailable

OMDB_BASE = "https://www.omdbapi.com/"
logger = logging.getLogger(__name__)


class OmdbClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = OMDB_BASE,
        timeout: float = 10,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def fetch_title(self, imdb_id: str) -> Dict:
        """Fetch the OMDb record for an IMDb title ID.

        Raises MetadataUnavailable on transport errors, timeouts, non-200
        responses, non-JSON bodies and negative ("Response": "False") answers.
        """
        if not self.api_key:
            logger.warning("OMDb API key not configured")
            raise MetadataUnavailable(imdb_id, "OMDb API key not configured")

        params = {"apikey": self.api_key, "i": imdb_id}
        try:
            resp = await self._client.get(self.base_url, params=params)
        except httpx.TimeoutException as e:
            logger.warning(f"OMDb request timed out for {imdb_id}: {e}")
            raise MetadataUnavailable(imdb_id, "request timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"OMDb request failed for {imdb_id}: {e}")
            raise MetadataUnavailable(imdb_id, f"request failed: {e}") from e

        if resp.status_code != 200:
            raise MetadataUnavailable(imdb_id, f"HTTP error: {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise MetadataUnavailable(imdb_id, "Could not parse json from response") from e

        if not isinstance(data, dict) or data.get("Response") != "True":
            error = data.get("Error") if isinstance(data, dict) else None
            raise MetadataUnavailable(imdb_id, f"OMDb API error: {error or 'Could not parse json from response'}")

        logger.debug(f"OMDb lookup succeeded for {imdb_id}: {data.get('Title')}")
        return data

    async def aclose(self) -> None:
        await self._client.aclose()
