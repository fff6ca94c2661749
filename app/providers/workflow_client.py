from typing import Any, Dict, Optional

import httpx

from app.models.uar_models import WorkflowResponse


class WorkflowClient:
    """Posts notification payloads to the external workflow endpoint."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport

    async def post(self, url: str, payload: Dict[str, Any]) -> WorkflowResponse:
        """
        POST ``payload`` as JSON.

        Non-2xx responses are returned, not raised; transport errors
        propagate as ``httpx.RequestError``.
        """
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.post(
                url,
                headers={"Content-Type": "application/json"},
                json=payload,
            )

        return WorkflowResponse(
            ok=response.is_success,
            status=response.status_code,
            body=response.text,
        )
