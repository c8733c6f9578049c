"""
Minimal client for the WATI messaging API.

Used to start conversations with a template and to send session messages.
The bearer token is never logged.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from watihook.errors import CollaboratorTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[Any] = None
    body: Optional[Any] = None


def _accepted(body: Any) -> bool:
    # WATI answers 200 with result=false (or "error") for rejected sends
    if not isinstance(body, dict):
        return False
    result = body.get("result", True)
    if isinstance(result, str):
        return result.lower() == "success"
    return bool(result)


def _provider_message_id(body: dict[str, Any]) -> Optional[str]:
    message = body.get("message")
    if isinstance(message, dict) and message.get("id"):
        return str(message["id"])
    receivers = body.get("receivers")
    if isinstance(receivers, list) and receivers and isinstance(receivers[0], dict):
        local_id = receivers[0].get("localMessageId")
        if local_id:
            return str(local_id)
    if body.get("id"):
        return str(body["id"])
    return None


class WatiClient:

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str,
        channel_number: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._token = api_token
        self._channel_number = channel_number
        self._timeout = timeout
        self._transport = transport

    async def send_template_message(
        self,
        wa_number: str,
        template_name: str,
        parameters: Optional[list[dict[str, str]]] = None,
        broadcast_name: Optional[str] = None,
    ) -> SendResult:
        """
        POST /sendTemplateMessage?whatsappNumber={wa_number}
        payload:
        {
          "template_name": "missed_appointment",
          "broadcast_name": "init_1700000000000",
          "parameters": [{"name": "name", "value": "Customer"}],
          "channel_number": "27772538155"
        }
        """
        payload = {
            "template_name": template_name,
            "broadcast_name": broadcast_name or f"init_{int(time.time() * 1000)}",
            "parameters": parameters if parameters is not None else [{"name": "name", "value": "Customer"}],
            "channel_number": self._channel_number,
        }
        return await self._post(
            "/sendTemplateMessage",
            params={"whatsappNumber": wa_number},
            json=payload,
        )

    async def send_session_message(self, wa_number: str, text: str) -> SendResult:
        """POST /sendSessionMessage/{wa_number}?messageText={text}"""
        return await self._post(
            f"/sendSessionMessage/{wa_number}",
            params={"messageText": text},
        )

    async def _post(
        self,
        path: str,
        params: dict[str, str],
        json: Optional[dict[str, Any]] = None,
    ) -> SendResult:
        url = f"{self._base}{path}"
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, params=params, json=json, headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"WATI request timed out: {path}")
            raise CollaboratorTimeoutError(f"Messaging API call timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.error(f"WATI request failed: {path} status={e.response.status_code} detail={detail}")
            return SendResult(success=False, error=detail)
        except httpx.RequestError as e:
            logger.error(f"WATI request error: {path} {e}")
            return SendResult(success=False, error=str(e))
        except ValueError as e:
            logger.error(f"WATI response was not JSON: {path}")
            return SendResult(success=False, error=f"Invalid response body: {e}")

        if not _accepted(body):
            logger.error(f"WATI rejected send: {path} body={body}")
            return SendResult(success=False, error=body)

        return SendResult(success=True, message_id=_provider_message_id(body), body=body)


def _error_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
