from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol

import httpx


class BackendError(Exception):
    """Raised when the remote system of record rejects or cannot serve a call."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkFailure(BackendError):
    """The backend could not be reached."""


class RequestTimeout(NetworkFailure):
    """The backend did not answer within the configured timeout."""


class OrderApi(Protocol):
    async def list_orders(self) -> List[dict]: ...

    async def create_order(self, payload: Mapping[str, Any]) -> dict: ...

    async def update_order(self, order_id: str, fields: Mapping[str, Any]) -> dict: ...

    async def update_order_item(self, item_id: str, status: str) -> dict: ...


class RefundApi(Protocol):
    async def create_refund(self, payload: Mapping[str, Any]) -> dict: ...

    async def update_refund(self, refund_id: str, fields: Mapping[str, Any]) -> dict: ...

    async def list_refunds(
        self,
        refund_id: str | None = None,
        order_id: str | None = None,
        status: str | None = None,
    ) -> List[dict]: ...


class LedgerApi(Protocol):
    async def append_transaction(self, payload: Mapping[str, Any]) -> dict: ...

    async def send_alert(self, payload: Mapping[str, Any]) -> dict: ...


class SalesApi(Protocol):
    async def list_sales(self) -> List[dict]: ...

    async def add_sale(self, payload: Mapping[str, Any]) -> dict: ...


class RequestSender(Protocol):
    async def send(self, target: str, method: str, body: Any) -> Any: ...


TRANSACTION_LOG_PATH = "/api/transactions/log"
MONITORING_ALERT_PATH = "/api/monitoring/alert"


class BackendClient:
    """HTTP client for the order, refund, transaction, alert and sales APIs."""

    def __init__(
        self,
        base_url: str,
        write_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._write_timeout = write_timeout
        # Order mutations use the transport default timeout.
        self._client = httpx.AsyncClient(base_url=self._base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Mapping[str, str]] = None,
        timeout: float | None = None,
    ) -> Any:
        kwargs: Dict[str, Any] = {"json": json, "params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise RequestTimeout(f"{method} {path} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"Backend unreachable for {method} {path}: {exc}") from exc

        if response.status_code >= 400:
            raise BackendError(
                f"{method} {path} failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    async def health(self) -> bool:
        try:
            await self._request("GET", "/api/health")
        except BackendError:
            return False
        return True

    async def list_orders(self) -> List[dict]:
        return await self._request("GET", "/api/orders")

    async def create_order(self, payload: Mapping[str, Any]) -> dict:
        return await self._request("POST", "/api/orders", json=dict(payload))

    async def update_order(self, order_id: str, fields: Mapping[str, Any]) -> dict:
        return await self._request("PATCH", f"/api/orders/{order_id}", json=dict(fields))

    async def update_order_item(self, item_id: str, status: str) -> dict:
        return await self._request("PATCH", f"/api/orders/items/{item_id}", json={"status": status})

    async def create_refund(self, payload: Mapping[str, Any]) -> dict:
        return await self._request(
            "POST", "/api/refunds", json=dict(payload), timeout=self._write_timeout
        )

    async def update_refund(self, refund_id: str, fields: Mapping[str, Any]) -> dict:
        return await self._request(
            "PUT", f"/api/refunds/{refund_id}", json=dict(fields), timeout=self._write_timeout
        )

    async def list_refunds(
        self,
        refund_id: str | None = None,
        order_id: str | None = None,
        status: str | None = None,
    ) -> List[dict]:
        params = {
            key: value
            for key, value in (("id", refund_id), ("orderId", order_id), ("status", status))
            if value
        }
        return await self._request(
            "GET", "/api/refunds", params=params or None, timeout=self._write_timeout
        )

    async def append_transaction(self, payload: Mapping[str, Any]) -> dict:
        return await self.send(TRANSACTION_LOG_PATH, "POST", dict(payload))

    async def send_alert(self, payload: Mapping[str, Any]) -> dict:
        return await self.send(MONITORING_ALERT_PATH, "POST", dict(payload))

    async def list_sales(self) -> List[dict]:
        return await self._request("GET", "/api/sales")

    async def add_sale(self, payload: Mapping[str, Any]) -> dict:
        return await self._request("POST", "/api/sales", json=dict(payload))

    async def send(self, target: str, method: str, body: Any) -> Any:
        return await self._request(method.upper(), target, json=body, timeout=self._write_timeout)
