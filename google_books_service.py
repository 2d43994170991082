import logging
import time
from typing import Optional, Dict, Any, List

import httpx

from book import ExternalBook
from config import settings
from http_client import SharedHTTPClient, get_http_client


logger = logging.getLogger(__name__)

# Google Books caps maxResults at 40
MAX_RESULTS_LIMIT = 40


class ExternalServiceError(Exception):
    """Raised when the external book search provider is unreachable or answers with an error"""
    pass


class GoogleBooksService:
    """Search provider backed by the Google Books volumes API"""

    def __init__(self, api_key: Optional[str] = None, client: Optional[SharedHTTPClient] = None):
        self.api_key = api_key or settings.google_books_api_key
        self.base_url = "https://www.googleapis.com/books/v1"
        self.timeout = settings.google_books_timeout
        self.max_results = min(settings.google_books_max_results, MAX_RESULTS_LIMIT)
        self._client = client

    async def _get_client(self) -> SharedHTTPClient:
        if self._client is None:
            self._client = await get_http_client()
        return self._client

    async def _make_api_request(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Make an API request to Google Books and return the decoded JSON body"""
        url = f"{self.base_url}/{endpoint}"

        if self.api_key:
            params["key"] = self.api_key

        client = await self._get_client()
        start_time = time.time()

        try:
            response = await client.get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            logger.error(f"Google Books request timed out after {self.timeout}s")
            raise ExternalServiceError("Google Books request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Google Books request failed: {e}")
            raise ExternalServiceError("Google Books unreachable") from e

        response_time_ms = int((time.time() - start_time) * 1000)

        if response.status_code != 200:
            logger.error(f"Google Books request failed: {response.status_code} - {response.text[:200]}")
            raise ExternalServiceError(f"Google Books answered with status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalServiceError("Google Books returned an undecodable body") from e

        logger.debug(f"Google Books {endpoint} answered in {response_time_ms}ms")
        return payload

    @staticmethod
    def _parse_volume(volume_data: Dict[str, Any]) -> ExternalBook:
        """Parse one item of a volumes response"""
        volume_info = volume_data.get("volumeInfo", {})

        authors = volume_info.get("authors") or []
        image_links = volume_info.get("imageLinks") or {}

        return ExternalBook(
            id=volume_data.get("id", ""),
            title=volume_info.get("title", ""),
            authors=", ".join(authors) if authors else "Unknown",
            description=volume_info.get("description"),
            image_url=image_links.get("thumbnail") or image_links.get("smallThumbnail"),
        )

    async def search_books(self, query: str, max_results: Optional[int] = None) -> List[ExternalBook]:
        """
        Search for books using a free-text query

        Args:
            query: Search query (title, author, etc.)
            max_results: Maximum number of results to request

        Returns:
            ExternalBook objects in provider order

        Raises:
            ExternalServiceError: the provider could not be queried
        """
        if not query or not query.strip():
            logger.warning("Empty search query provided")
            return []

        params = {
            "q": query.strip(),
            "maxResults": min(max_results or self.max_results, MAX_RESULTS_LIMIT),
        }

        response = await self._make_api_request("volumes", params)

        # No "items" key at all when nothing matched
        books = [self._parse_volume(item) for item in response.get("items") or []]
        logger.info(f"Found {len(books)} Google Books results for query: {query}")
        return books
