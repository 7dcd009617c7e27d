# trustgraph/ingestion/provider.py
"""
Follow-list / trust provider boundary.

The provider supplies raw follow-graph data: outbound follow lists, hop
distances (with corroborating path counts when known) and opaque trust
scores. Its scoring algorithm is not ours; only distance and paths feed
the local trust formula.

A provider that is not installed or not ready raises
ProviderUnavailableError. A ready provider whose data call fails raises a
ProviderDataError subclass. An empty list or dict is a valid answer.

OracleTrustProvider talks to a WoT oracle over HTTP:
    GET  /health
    GET  /follows?pubkey=<hex>            -> {"follows": [...]}
    POST /distance/batch {from, targets}  -> {"results": [{to, distance, paths, mutual}]}
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..errors import (
    ProviderDataError,
    ProviderNetworkError,
    ProviderPayloadError,
    ProviderRequestError,
    ProviderUnavailableError,
)
from ..graph.scoring import trust_score
from ..logging import get_logger
from ..settings import settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class DistanceInfo:
    """Distance from the provider's identity to a target."""
    distance: Optional[int]  # None when unreachable
    paths: Optional[int] = None  # None when the provider did not count paths


class TrustProvider(ABC):
    """Source of follow lists and hop distances."""

    @abstractmethod
    async def is_available(self) -> bool:
        """True when the provider can answer queries right now."""

    @abstractmethod
    async def get_my_pubkey(self) -> str:
        """Identity the provider measures distances from."""

    @abstractmethod
    async def get_follows(self, pubkey: str) -> List[str]:
        """Ordered outbound follow list for pubkey."""

    @abstractmethod
    async def get_distance_batch(self, pubkeys: Sequence[str]) -> Dict[str, DistanceInfo]:
        """Distances for the requested keys; unknown keys may be omitted."""

    @abstractmethod
    async def get_trust_score_batch(self, pubkeys: Sequence[str]) -> Dict[str, float]:
        """Provider's own scores. Opaque; never written onto graph nodes."""

    async def close(self) -> None:
        return None


class OracleTrustProvider(TrustProvider):
    """
    TrustProvider backed by an HTTP WoT oracle.

    The oracle has no notion of "me", so the local identity is passed in.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        my_pubkey: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Oracle base URL (defaults to settings.oracle_url)
            my_pubkey: Identity distances are measured from
            timeout: Request timeout in seconds
            client: Preconfigured AsyncClient (tests pass one with a MockTransport)
        """
        self.base_url = (base_url or settings.oracle_url or "").rstrip("/")
        self.my_pubkey = my_pubkey
        self.timeout = timeout if timeout is not None else settings.oracle_timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._available: Optional[bool] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def _request(self, method: str, path: str, decode: bool = True, **kwargs: Any) -> Any:
        """
        Send a request and decode the JSON body (None when decode is False).

        Raises:
            ProviderUnavailableError: No oracle URL configured
            ProviderRequestError: Non-2xx response
            ProviderNetworkError: Timed out or transport failure
            ProviderPayloadError: Body is not JSON
        """
        if not self.base_url and self._owns_client:
            raise ProviderUnavailableError("No oracle URL configured")
        try:
            response = await self._get_client().request(method, path, **kwargs)
            response.raise_for_status()
            return response.json() if decode else None
        except httpx.HTTPStatusError as e:
            raise ProviderRequestError(e.response.status_code, str(e))
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise ProviderNetworkError(f"Oracle unreachable: {e}")
        except (httpx.DecodingError, ValueError) as e:
            raise ProviderPayloadError(f"Malformed oracle response for {path}: {e}")

    async def is_available(self) -> bool:
        if self._available:
            return True
        try:
            await self._request("GET", "/health", decode=False)
            self._available = True
        except (ProviderUnavailableError, ProviderDataError) as e:
            logger.warning("oracle_unavailable", url=self.base_url, error=str(e))
            self._available = False
        return self._available

    async def get_my_pubkey(self) -> str:
        if not self.my_pubkey:
            raise ProviderUnavailableError("Oracle provider has no local identity")
        return self.my_pubkey

    async def get_follows(self, pubkey: str) -> List[str]:
        data = await self._request("GET", "/follows", params={"pubkey": pubkey})
        follows = data.get("follows") if isinstance(data, dict) else None
        if not isinstance(follows, list):
            return []
        return [key for key in follows if isinstance(key, str)]

    async def get_distance_batch(self, pubkeys: Sequence[str]) -> Dict[str, DistanceInfo]:
        if not pubkeys:
            return {}
        source = await self.get_my_pubkey()
        data = await self._request(
            "POST",
            "/distance/batch",
            json={"from": source, "targets": list(pubkeys)},
        )
        results = data.get("results") if isinstance(data, dict) else None

        distances: Dict[str, DistanceInfo] = {}
        for item in results or []:
            if not isinstance(item, dict) or not isinstance(item.get("to"), str):
                continue
            distance = item.get("distance")
            if not isinstance(distance, int) or distance < 0:
                distance = None
            paths = item.get("paths")
            if not isinstance(paths, int) or paths < 1:
                paths = None
            distances[item["to"]] = DistanceInfo(distance=distance, paths=paths)
        return distances

    async def get_trust_score_batch(self, pubkeys: Sequence[str]) -> Dict[str, float]:
        # The oracle exposes no score endpoint; derive one from its distances
        distances = await self.get_distance_batch(pubkeys)
        return {
            key: trust_score(info.distance, info.paths or 1)
            for key, info in distances.items()
            if info.distance is not None
        }

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
