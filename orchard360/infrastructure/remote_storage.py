"""
Infrastructure layer: remote relational storage provider with retry logic.

Talks to a PostgREST (Supabase) API with tables sectors, orchards, blocks,
tree_events and audit_log. Rows use snake_case columns, which map directly
onto the domain models' field names.
"""
import logging
from typing import Any, Dict, List, Optional
import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from orchard360.config import settings
from orchard360.infrastructure.api_constants import (
    APIConstants,
    Collections,
    RemoteTables,
)

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class ExternalAPIError(Exception):
    """Custom exception for remote storage API errors."""
    
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RemoteStorageProvider:
    """
    Storage provider backed by a remote relational service.
    Implements retry logic with exponential backoff.
    """
    
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the client with configuration."""
        self.base_url = base_url or settings.remote_api_base_url
        self.api_key = api_key if api_key is not None else settings.remote_api_key
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "apikey": self.api_key,
                "Authorization": f"Bearer {self.api_key}",
                "accept": APIConstants.CONTENT_TYPE_JSON,
            },
            timeout=timeout or settings.request_timeout,
        )
    
    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
    
    async def __aenter__(self) -> "RemoteStorageProvider":
        return self
    
    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
    
    @retry(
        stop=stop_after_attempt(settings.max_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_multiplier,
            min=settings.retry_min_wait,
            max=settings.retry_max_wait,
        ),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.RequestError)),
        reraise=True,
    )
    async def _make_request(
        self, 
        method: str, 
        endpoint: str, 
        **kwargs
    ) -> Any:
        """
        Make an HTTP request with retry logic.
        
        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            **kwargs: Additional arguments for the request
            
        Returns:
            Decoded JSON body, or None for empty responses
            
        Raises:
            ExternalAPIError: If the request fails with a client error
        """
        try:
            response = await self.client.request(method, endpoint, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            # Retry on server errors (5xx)
            if e.response.status_code >= 500:
                raise
            # Don't retry on client errors (4xx)
            raise ExternalAPIError(
                f"API request failed: {e.response.status_code} - {e.response.text}",
                status_code=e.response.status_code,
            )
        
        if not response.content:
            return None
        return response.json()
    
    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Run a request, converting exhausted retries into ExternalAPIError."""
        try:
            return await self._make_request(method, endpoint, **kwargs)
        except httpx.HTTPStatusError as e:
            raise ExternalAPIError(
                f"API request failed after retries: {e.response.status_code}",
                status_code=502,
            )
        except httpx.RequestError as e:
            raise ExternalAPIError(f"API request error: {str(e)}", status_code=503)
    
    async def load(self, collection_key: str) -> List[Record]:
        """
        Fetch every row of the collection's table.
        
        Args:
            collection_key: Collection to read
            
        Returns:
            List of rows with null columns removed
            
        Raises:
            ExternalAPIError: If the request fails
        """
        data = await self._request(
            "GET",
            RemoteTables.endpoint_for(collection_key),
            params={"select": "*"},
        )
        rows = data or []
        logger.debug(f"Loaded {len(rows)} rows from {RemoteTables.table_for(collection_key)}")
        return [self._row_to_record(row) for row in rows]
    
    async def save(self, collection_key: str, records: List[Record]) -> None:
        """
        Persist a full collection: upsert every record, then delete rows
        whose id is no longer present (append-only collections excepted).
        
        Args:
            collection_key: Collection to write
            records: Full collection contents
            
        Raises:
            ExternalAPIError: If a request fails
        """
        endpoint = RemoteTables.endpoint_for(collection_key)
        
        if records:
            await self._request(
                "POST",
                endpoint,
                json=self._uniform_rows(records),
                headers={
                    "Content-Type": APIConstants.CONTENT_TYPE_JSON,
                    "Prefer": APIConstants.PREFER_UPSERT,
                },
            )
        
        if collection_key in Collections.APPEND_ONLY:
            return
        
        await self._request(
            "DELETE",
            endpoint,
            params={"id": self._not_in_filter([r["id"] for r in records])},
            headers={"Prefer": APIConstants.PREFER_MINIMAL},
        )
    
    @staticmethod
    def _uniform_rows(records: List[Record]) -> List[Record]:
        """
        Give every row the same columns, missing ones as explicit null.
        
        A bulk body must use one key set, and a merge upsert only
        overwrites the columns it is sent.
        """
        columns: List[str] = []
        for record in records:
            for key in record:
                if key not in columns:
                    columns.append(key)
        return [{c: record.get(c) for c in columns} for record in records]
    
    @staticmethod
    def _not_in_filter(ids: List[str]) -> str:
        """
        Build a PostgREST filter matching rows whose id is not in `ids`.
        
        Args:
            ids: Ids to keep
            
        Returns:
            Filter expression for the `id` query parameter
        """
        if not ids:
            return "not.is.null"
        quoted = ",".join(f'"{i}"' for i in ids)
        return f"not.in.({quoted})"
    
    @staticmethod
    def _row_to_record(row: Record) -> Record:
        """Drop null columns so they become absent optional fields."""
        return {k: v for k, v in row.items() if v is not None}
