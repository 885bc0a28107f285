"""
Guild Wars 2 v2 API client.

Fetches items, recipes and trading post order books with chunked id
requests, token-bucket rate limiting and a short-lived listings cache.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

from datasources.http import get_shared_session
from services.http_cache import TTLCache
from services.netlimit import TokenBucket
from utils.constants import API_BASE, IDS_PER_REQUEST, LISTINGS_TTL_SEC

INVALID_IDS_TEXT = "all ids provided are invalid"


class GW2APIError(Exception):
    """Custom exception for market API errors."""
    pass


def chunked(ids: List[Any], size: int) -> Iterable[List[Any]]:
    for i in range(0, len(ids), size):
        yield ids[i:i + size]


class GW2Client:
    """Client for the items, recipes and commerce endpoints."""

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None,
                 bucket: Optional[TokenBucket] = None, cache: Optional[TTLCache] = None):
        """Initialize client with the application configuration."""
        self.config = config
        self.logger = logging.getLogger(__name__)

        api_config = config.get('api', {})
        self.base_url = api_config.get('base_url', API_BASE).rstrip('/')
        self.lang = api_config.get('lang', 'en')
        self.chunk_size = max(1, int(api_config.get('ids_per_request', IDS_PER_REQUEST)))
        self.timeout = api_config.get('timeout_seconds', 30)

        self.session = session or get_shared_session()
        self.bucket = bucket or TokenBucket.from_config(api_config)
        self.cache = cache or TTLCache(default_ttl=api_config.get('cache_ttl_sec', LISTINGS_TTL_SEC))
        self.request_count = 0

    def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        self.bucket.acquire()
        self.request_count += 1
        try:
            self.logger.debug("GET %s params=%s", url, params)
            return self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            self.logger.error("Request to %s failed: %s", url, e)
            raise GW2APIError(f"API request failed: {e}") from e

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None):
        response = self._request(path, params)
        if response.status_code == 404 and INVALID_IDS_TEXT in (response.text or "").lower():
            # Every id in the chunk was unknown to the API
            self.logger.debug("No valid ids in request to %s", path)
            return []
        try:
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            self.logger.error("API returned %s for %s: %s", response.status_code, path, e)
            raise GW2APIError(f"API request failed: {e}") from e
        except ValueError as e:
            self.logger.error("Failed to parse JSON response from %s: %s", path, e)
            raise GW2APIError(f"Invalid JSON response: {e}") from e

    def get_by_ids(self, path: str, ids: Iterable[Any], **params) -> List[Dict[str, Any]]:
        """Fetch records for ``ids`` in chunks the API accepts."""
        ids = list(dict.fromkeys(ids))
        records: List[Dict[str, Any]] = []
        for chunk in chunked(ids, self.chunk_size):
            query = dict(params)
            query['ids'] = ",".join(str(i) for i in chunk)
            records.extend(self._get_json(path, query))
        self.logger.debug("Fetched %d %s records for %d ids", len(records), path, len(ids))
        return records

    def get_all_pages(self, path: str, **params) -> List[Dict[str, Any]]:
        """Fetch every record of a paginated endpoint."""
        records: List[Dict[str, Any]] = []
        page, page_total = 0, 1
        while page < page_total:
            query = dict(params, page=page, page_size=self.chunk_size)
            response = self._request(path, query)
            try:
                response.raise_for_status()
                records.extend(response.json())
            except requests.exceptions.HTTPError as e:
                raise GW2APIError(f"API request failed: {e}") from e
            except ValueError as e:
                raise GW2APIError(f"Invalid JSON response: {e}") from e
            try:
                page_total = int(response.headers.get('X-Page-Total', 1))
            except (TypeError, ValueError) as e:
                raise GW2APIError(f"Invalid X-Page-Total header: {e}") from e
            page += 1
        self.logger.info("Fetched %d records from %d pages of %s", len(records), page_total, path)
        return records

    def get_recipe_ids(self) -> List[int]:
        return list(self._get_json('recipes'))

    def get_recipes(self, ids: Optional[Iterable[int]] = None) -> List[Dict[str, Any]]:
        """Recipes for ``ids``, or every recipe when ``ids`` is omitted."""
        if ids is None:
            return self.get_all_pages('recipes')
        return self.get_by_ids('recipes', ids)

    def get_items(self, ids: Iterable[int], lang: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.get_by_ids('items', ids, lang=lang or self.lang)

    def get_prices(self, ids: Iterable[int]) -> List[Dict[str, Any]]:
        """Best buy and sell tier per item."""
        return self.get_by_ids('commerce/prices', ids)

    def get_listings(self, ids: Iterable[int]) -> List[Dict[str, Any]]:
        """Full order books; recently fetched books are served from the cache."""
        ids = list(dict.fromkeys(ids))
        books: Dict[Any, Dict[str, Any]] = {}
        missing = []
        for item_id in ids:
            cached = self.cache.get(('listings', item_id))
            if cached is None:
                missing.append(item_id)
            else:
                books[item_id] = cached

        if missing:
            for record in self.get_by_ids('commerce/listings', missing):
                self.cache.set(('listings', record['id']), record)
                books[record['id']] = record

        self.logger.info("Listings: %d requested, %d cached, %d fetched",
                         len(ids), len(ids) - len(missing), len(books) - (len(ids) - len(missing)))
        return [books[i] for i in ids if i in books]

    def get_custom_recipes(self, url: str) -> List[Dict[str, Any]]:
        """Recipe records published outside the API, e.g. mystic forge recipes."""
        self.bucket.acquire()
        self.request_count += 1
        self.logger.info("Fetching custom recipes from %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            records = response.json()
        except requests.exceptions.RequestException as e:
            self.logger.error("Request to %s failed: %s", url, e)
            raise GW2APIError(f"Custom recipe request failed: {e}") from e
        except ValueError as e:
            raise GW2APIError(f"Invalid JSON response: {e}") from e
        if not isinstance(records, list):
            raise GW2APIError(f"Expected a list of recipes from {url}")
        return records
