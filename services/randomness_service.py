"""
Randomness oracle client

Two-phase protocol:
1. request_randomness(...) -> request_id      (outbound, this module)
2. oracle later POSTs /api/oracle/fulfill       (inbound, api/oracle.py)

The raffle stores the returned id as the only correlation token between the
two phases.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Protocol

import httpx

from database import get_settings
from core.exceptions import OracleError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionParameters:
    key_hash: str
    subscription_id: int
    request_confirmations: int
    callback_gas_limit: int
    num_words: int = 1


class RandomnessProvider(Protocol):
    def request_randomness(self, params: SelectionParameters) -> int:
        """Submit a request and return its id (positive integer)."""
        ...


class HttpRandomnessProvider:
    """Talks to an oracle gateway over JSON/HTTP.

    POST {base_url}/requests
        {"key_hash": ..., "subscription_id": ..., "request_confirmations": ...,
         "callback_gas_limit": ..., "num_words": 1}
    -> {"request_id": "123..."}
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 10.0,
        token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {"X-Oracle-Token": token} if token else {}
        self.client = client or httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        self.client.close()

    def request_randomness(self, params: SelectionParameters) -> int:
        payload = asdict(params)
        # 256-bit subscription ids do not survive JSON number parsing everywhere
        payload["subscription_id"] = str(params.subscription_id)
        data = self._post("/requests", payload)

        raw_id = data.get("request_id")
        if raw_id is None:
            raise OracleError(f"Oracle response has no request_id: {data}")
        try:
            request_id = int(raw_id)
        except (TypeError, ValueError):
            raise OracleError(f"Oracle returned a non-integer request_id: {raw_id!r}")

        logger.info(f"Oracle accepted randomness request {request_id}")
        return request_id

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = self.client.post(self.base_url + path, json=payload, headers=self.headers)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise OracleError(f"Oracle request failed: {e}") from e
        except ValueError as e:
            raise OracleError(f"Oracle returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise OracleError(f"Oracle returned unexpected payload: {data!r}")
        if "error" in data:
            raise OracleError(f"Oracle error: {data['error']}")
        return data


def get_randomness_provider():
    """
    FastAPI dependency: oracle client built from settings

    Closed after the request.
    """
    settings = get_settings()
    provider = HttpRandomnessProvider(
        settings.oracle_url,
        timeout_s=settings.oracle_timeout,
        token=settings.oracle_token,
    )
    try:
        yield provider
    finally:
        provider.close()
