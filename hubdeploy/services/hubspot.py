import hashlib
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from hubdeploy.config import settings
from hubdeploy.errors import RejectedError, RemoteError, TransientError
from hubdeploy.models.units import (
    LifecycleStageUnit,
    PipelineUnit,
    PropertyGroupUnit,
    PropertyUnit,
    Unit,
)

logger = logging.getLogger(__name__)

LIFECYCLE_OBJECT_TYPE = "contacts"
LIFECYCLE_PROPERTY = "lifecyclestage"


@dataclass
class RemoteResult:
    remote_id: str
    raw: Any = None


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode()).hexdigest()


def _parse_hubspot_error(response: httpx.Response) -> tuple[str, str]:
    fallback_code = "hubspot_request_failed"
    fallback_message = "HubSpot API request failed"

    try:
        payload = response.json()
    except ValueError:
        body = response.text.strip()
        return fallback_code, body or fallback_message

    if isinstance(payload, dict):
        category = payload.get("category") or payload.get("errorType")
        code = str(category).lower() if category else fallback_code
        return code, str(payload.get("message") or fallback_message)

    return fallback_code, fallback_message


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text.strip() or None


def _require_object(raw: Any, what: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise RejectedError(
            f"HubSpot {what} response is not an object",
            code="hubspot_invalid_response",
            response=raw,
        )
    return raw


def _remote_error(response: httpx.Response) -> RemoteError:
    code, message = _parse_hubspot_error(response)
    status_code = response.status_code
    body = _response_body(response)

    if status_code == 429 or status_code >= 500:
        return TransientError(message, code=code, status_code=status_code, response=body)
    if status_code == 409:
        return RejectedError(message, code="conflict", status_code=status_code, response=body)
    return RejectedError(message, code=code, status_code=status_code, response=body)


class HubSpotClient:
    """HubSpot CRM v3 client scoped to one private-app key.

    Every request is bounded by an httpx timeout. Rate limits, 5xx answers and
    transport failures are retried with exponential backoff; anything else is
    raised on the first attempt.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        retry_wait: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key_hash = hash_api_key(api_key)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._base_url = (base_url or settings.hubspot_base_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.hubspot_timeout_seconds
        self._max_attempts = max_attempts or settings.hubspot_max_attempts
        self._retry_wait = retry_wait if retry_wait is not None else settings.hubspot_retry_wait_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _send(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        *,
        allow_not_found: bool = False,
    ) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=payload)
        except httpx.TimeoutException as exc:
            raise TransientError(f"HubSpot request timed out: {method} {path}", code="hubspot_timeout") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"HubSpot request failed: {exc}", code="hubspot_unreachable") from exc

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            raise _remote_error(response)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RejectedError(
                f"HubSpot returned a non-JSON body for {method} {path}",
                code="hubspot_invalid_response",
                status_code=response.status_code,
                response=response.text.strip() or None,
            ) from exc

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        *,
        allow_not_found: bool = False,
    ) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=10),
            retry=retry_if_exception_type(TransientError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying HubSpot request",
                        extra={
                            "method": method,
                            "path": path,
                            "attempt": attempt.retry_state.attempt_number,
                            "api_key_hash": self._api_key_hash,
                        },
                    )
                return await self._send(method, path, payload, allow_not_found=allow_not_found)

    async def create_or_update(self, unit: Unit) -> RemoteResult:
        if isinstance(unit, PropertyGroupUnit):
            raw = await self._request(
                "POST",
                f"/crm/v3/properties/{unit.object_type}/groups",
                unit.spec.payload(),
            )
            body = _require_object(raw, "property group")
            return RemoteResult(remote_id=str(body.get("name") or unit.spec.name), raw=raw)

        if isinstance(unit, PropertyUnit):
            raw = await self._request(
                "POST",
                f"/crm/v3/properties/{unit.object_type}",
                unit.spec.payload(),
            )
            body = _require_object(raw, "property")
            return RemoteResult(remote_id=str(body.get("name") or unit.spec.name), raw=raw)

        if isinstance(unit, PipelineUnit):
            raw = await self._request(
                "POST",
                f"/crm/v3/pipelines/{unit.object_type}",
                unit.spec.payload(),
            )
            pipeline_id = _require_object(raw, "pipeline").get("id")
            if not pipeline_id:
                raise RejectedError(
                    "HubSpot pipeline response missing id",
                    code="hubspot_invalid_response",
                    response=raw,
                )
            return RemoteResult(remote_id=str(pipeline_id), raw=raw)

        if isinstance(unit, LifecycleStageUnit):
            return await self._add_lifecycle_stage(unit)

        raise TypeError(f"Unsupported unit type: {type(unit).__name__}")

    async def exists(self, unit: Unit) -> bool:
        """Whether HubSpot already has an entity this unit would create."""
        if isinstance(unit, PropertyGroupUnit):
            raw = await self._request(
                "GET",
                f"/crm/v3/properties/{unit.object_type}/groups/{unit.spec.name}",
                allow_not_found=True,
            )
            return raw is not None

        if isinstance(unit, PropertyUnit):
            raw = await self._request(
                "GET",
                f"/crm/v3/properties/{unit.object_type}/{unit.spec.name}",
                allow_not_found=True,
            )
            return raw is not None

        if isinstance(unit, PipelineUnit):
            raw = _require_object(await self._request("GET", f"/crm/v3/pipelines/{unit.object_type}"), "pipelines")
            return any(
                isinstance(pipeline, dict) and pipeline.get("label") == unit.spec.label
                for pipeline in raw.get("results") or []
            )

        if isinstance(unit, LifecycleStageUnit):
            prop = _require_object(await self._lifecycle_property(), "lifecycle stage property")
            return any(
                isinstance(option, dict) and option.get("value") == unit.spec.name
                for option in prop.get("options") or []
            )

        raise TypeError(f"Unsupported unit type: {type(unit).__name__}")

    async def delete(self, remote_type: str, remote_id: str, object_type: str | None) -> None:
        if remote_type == "property_group":
            await self._request(
                "DELETE",
                f"/crm/v3/properties/{object_type}/groups/{remote_id}",
                allow_not_found=True,
            )
        elif remote_type == "property":
            await self._request(
                "DELETE",
                f"/crm/v3/properties/{object_type}/{remote_id}",
                allow_not_found=True,
            )
        elif remote_type == "pipeline":
            await self._request(
                "DELETE",
                f"/crm/v3/pipelines/{object_type}/{remote_id}",
                allow_not_found=True,
            )
        elif remote_type == "lifecycle_stage":
            await self._remove_lifecycle_stage(remote_id)
        else:
            raise ValueError(f"Unsupported remote type: {remote_type}")

    async def _lifecycle_property(self, *, allow_not_found: bool = False) -> dict | None:
        return await self._request(
            "GET",
            f"/crm/v3/properties/{LIFECYCLE_OBJECT_TYPE}/{LIFECYCLE_PROPERTY}",
            allow_not_found=allow_not_found,
        )

    async def _add_lifecycle_stage(self, unit: LifecycleStageUnit) -> RemoteResult:
        prop = _require_object(await self._lifecycle_property(), "lifecycle stage property")
        options = [option for option in prop.get("options") or [] if isinstance(option, dict)]

        if any(option.get("value") == unit.spec.name for option in options):
            raise RejectedError(
                f"Lifecycle stage '{unit.spec.name}' already exists",
                code="conflict",
                status_code=409,
            )

        options.append(
            {
                "label": unit.spec.label,
                "value": unit.spec.name,
                "displayOrder": unit.spec.display_order,
                "hidden": False,
            }
        )
        raw = await self._request(
            "PATCH",
            f"/crm/v3/properties/{LIFECYCLE_OBJECT_TYPE}/{LIFECYCLE_PROPERTY}",
            {"options": options},
        )
        return RemoteResult(remote_id=unit.spec.name, raw=raw)

    async def _remove_lifecycle_stage(self, stage_name: str) -> None:
        prop = await self._lifecycle_property(allow_not_found=True)
        if prop is None:
            return

        prop = _require_object(prop, "lifecycle stage property")
        options = [option for option in prop.get("options") or [] if isinstance(option, dict)]
        remaining = [option for option in options if option.get("value") != stage_name]
        if len(remaining) == len(options):
            return

        await self._request(
            "PATCH",
            f"/crm/v3/properties/{LIFECYCLE_OBJECT_TYPE}/{LIFECYCLE_PROPERTY}",
            {"options": remaining},
        )


def build_client(api_key: str) -> HubSpotClient:
    return HubSpotClient(api_key)
