"""Sandbox provider REST client: create/exec/write/destroy sandboxes over HTTP."""

import json
import logging
import os

import httpx

from appdock.errors import PermanentProviderError, ProviderError, TransientProviderError
from appdock.provisioning.types import CommandResult, ProviderHandle, SandboxSpec

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.sandbox.appdock.dev"
API_VERSION = "v1"
PROVIDER_NAME = "sandbox-api"
REQUEST_TIMEOUT = 60


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)[:200]
    return str(body)[:200]


def _raise_for_status(resp: httpx.Response, operation: str) -> None:
    if resp.is_success:
        return
    message = f"{operation} failed: HTTP {resp.status_code}: {_error_message(resp)}"
    if resp.status_code == 429 or resp.status_code >= 500:
        raise TransientProviderError(message, operation=operation, status_code=resp.status_code)
    raise PermanentProviderError(message, operation=operation, status_code=resp.status_code)


class SandboxApiClient:
    """ProvisioningClient backed by the sandbox provider's REST API.

    Requests are wrapped in the versioned envelope ``{"version": ..., "data": ...}``
    and authenticated with ``X-API-Key``.
    """

    def __init__(self, api_key=None, api_url=DEFAULT_API_URL, transport=None):
        self.api_key = api_key if api_key is not None else os.environ.get("SANDBOX_API_KEY", "")
        self.api_url = api_url.rstrip("/")
        self._transport = transport

    async def _api_request(self, operation, path, data, timeout=REQUEST_TIMEOUT, allow_not_found=False):
        """Make an authenticated API request.

        Returns:
            The response ``data`` dict (or the whole body when it has none),
            ``None`` for a tolerated 404.
        """
        url = f"{self.api_url}{path}"
        payload = {"version": API_VERSION, "data": data}
        headers = {"X-API-Key": self.api_key, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=headers, timeout=timeout)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"{operation} timed out: {e}", operation=operation) from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"{operation} failed: {type(e).__name__}: {e}", operation=operation) from e

        if allow_not_found and resp.status_code == 404:
            return None
        _raise_for_status(resp, operation)
        try:
            body = resp.json()
        except ValueError as e:
            raise ProviderError(f"{operation}: invalid JSON response", operation=operation, transient=True) from e
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def create(self, spec: SandboxSpec) -> ProviderHandle:
        data = {"template": spec.template, "ports": [str(p) for p in spec.ports], "labels": dict(spec.labels)}
        if spec.lifetime is not None:
            data["lifetime"] = int(spec.lifetime)
        result = await self._api_request("create", "/api/v1/sandboxes/create", data)
        sandbox = (result or {}).get("sandbox") or {}
        sandbox_id = sandbox.get("id")
        if not sandbox_id:
            raise PermanentProviderError(
                f"create: response has no sandbox id: {json.dumps(result)[:200]}", operation="create"
            )
        logger.info(f"Created sandbox {sandbox_id}")
        return ProviderHandle(provider=PROVIDER_NAME, sandbox_id=sandbox_id, domain=sandbox.get("domain", ""))

    async def write_files(self, handle: ProviderHandle, files) -> None:
        data = {
            "sandbox_id": handle.sandbox_id,
            "files": [{"path": f.path, "content": f.content} for f in files],
        }
        await self._api_request("write_files", "/api/v1/sandboxes/files/write", data)
        logger.debug(f"Wrote {len(data['files'])} file(s) to {handle.sandbox_id}")

    async def run_command(self, handle, command, *, background=False, env=None, timeout=None) -> CommandResult:
        data = {"sandbox_id": handle.sandbox_id, "command": command, "background": background, "env": dict(env or {})}
        if timeout is not None:
            data["timeout"] = int(timeout)
        request_timeout = REQUEST_TIMEOUT if timeout is None else timeout + 10
        result = await self._api_request("run_command", "/api/v1/sandboxes/exec", data, timeout=request_timeout) or {}
        return CommandResult(
            exit_code=int(result.get("exit_code", 0)),
            stdout=result.get("stdout", ""),
            stderr=result.get("stderr", ""),
        )

    def get_public_endpoint(self, handle: ProviderHandle, port: int) -> str:
        domain = handle.domain or "sandbox.appdock.dev"
        return f"https://{port}-{handle.sandbox_id}.{domain}"

    async def destroy(self, handle: ProviderHandle) -> None:
        result = await self._api_request(
            "destroy", "/api/v1/sandboxes/destroy", {"sandbox_id": handle.sandbox_id}, allow_not_found=True
        )
        if result is None:
            logger.info(f"Sandbox {handle.sandbox_id} already gone")
        else:
            logger.info(f"Destroyed sandbox {handle.sandbox_id}")
