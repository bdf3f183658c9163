from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx
import jwt
from fastapi import Header
from jwt import PyJWKClient

from .config import get_config
from .errors import ApiError, ErrorKind

logger = logging.getLogger(__name__)

USERS_PAGE_SIZE = 200
USERS_MAX_PAGES = 50


class SupabaseError(Exception):
    """A non-2xx answer (or transport failure) from PostgREST or GoTrue."""

    def __init__(
        self,
        action: str,
        *,
        status_code: int,
        message: str,
        code: Optional[str] = None,
        object_label: Optional[str] = None,
    ) -> None:
        label = f" ({object_label})" if object_label else ""
        super().__init__(
            f"Supabase {action} failed{label}: status={status_code}, code={code}, message={message}"
        )
        self.action = action
        self.status_code = status_code
        self.message = message
        self.code = code
        self.object_label = object_label


@lru_cache
def _jwks_client() -> PyJWKClient:
    return PyJWKClient(get_config().jwks_url)


def _parse_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise ApiError(ErrorKind.UNAUTHENTICATED, "Missing authorization token.")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise ApiError(ErrorKind.UNAUTHENTICATED, "Invalid authorization token.")
    return parts[1]


def parse_uuid(value: Optional[str], label: str) -> str:
    if not value:
        raise ApiError(ErrorKind.INVALID_ARGUMENT, f"Missing {label}.")
    try:
        return str(UUID(value))
    except ValueError as exc:
        raise ApiError(ErrorKind.INVALID_ARGUMENT, f"Invalid {label}.") from exc


async def _describe_response(resp: httpx.Response) -> str:
    try:
        return resp.text or "<empty response>"
    except UnicodeDecodeError:
        return "<unable to read response>"


def _error_fields(resp: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    """Pull (code, message) out of a PostgREST or GoTrue error body."""
    try:
        body = resp.json() if resp.content else {}
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        return None, None
    # GoTrue sends a numeric "code" next to the string "error_code"; prefer the latter.
    code = body.get("error_code") or body.get("code")
    message = (
        body.get("msg")
        or body.get("message")
        or body.get("error_description")
        or body.get("error")
    )
    return (str(code) if code is not None else None, str(message) if message else None)


async def _raise_supabase_error(
    resp: httpx.Response,
    action: str,
    *,
    object_label: Optional[str] = None,
) -> None:
    code, message = _error_fields(resp)
    if message is None:
        message = await _describe_response(resp)
    status = resp.status_code if resp.status_code >= 400 else 500
    raise SupabaseError(
        action,
        status_code=status,
        message=message,
        code=code,
        object_label=object_label,
    )


def is_unique_violation(error: SupabaseError) -> bool:
    return error.code == "23505" or error.status_code == 409


def is_already_registered(error: SupabaseError) -> bool:
    """True when GoTrue refused an invite because the email already has an account."""
    if error.code in {"email_exists", "user_already_exists"}:
        return True
    return "already been registered" in (error.message or "").lower()


async def _verify_access_token(token: str) -> Dict[str, Any]:
    config = get_config()
    audience = config.supabase_jwt_aud
    options = {"verify_aud": bool(audience)}
    try:
        signing_key = _jwks_client().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience=audience if audience else None,
            options=options,
        )
    except jwt.PyJWTError:
        logger.debug("JWKS verification unavailable, trying fallbacks")

    if config.supabase_jwt_secret:
        try:
            return jwt.decode(
                token,
                config.supabase_jwt_secret,
                algorithms=["HS256"],
                audience=audience if audience else None,
                options=options,
            )
        except jwt.PyJWTError as exc:
            raise ApiError(ErrorKind.UNAUTHENTICATED, "Invalid or expired token.") from exc

    try:
        async with httpx.AsyncClient(timeout=config.http_timeout) as client:
            resp = await client.get(
                f"{config.base_url}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": config.supabase_anon_key or "",
                },
            )
    except httpx.HTTPError as exc:
        raise ApiError(ErrorKind.UPSTREAM_ERROR, f"Unable to verify session: {exc}") from exc
    if resp.status_code >= 400:
        raise ApiError(ErrorKind.UNAUTHENTICATED, "Invalid or expired token.")
    data = resp.json() if resp.content else {}
    user_id = data.get("id")
    if not user_id:
        raise ApiError(ErrorKind.UNAUTHENTICATED, "Invalid or expired token.")
    return {"sub": user_id, "email": data.get("email")}


@dataclass
class SupabaseClient:
    base_url: str
    anon_key: str
    access_token: str
    timeout: float = 15.0

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(headers),
                )
        except httpx.HTTPError as exc:
            raise SupabaseError(
                f"{method} request",
                status_code=503,
                message=str(exc) or exc.__class__.__name__,
                object_label=url.removeprefix(self.base_url),
            ) from exc

    async def request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/rest/v1/{table}"
        return await self._send(method, url, params=params, json=json, headers=headers)

    async def auth_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/auth/v1/{path}"
        return await self._send(method, url, params=params, json=json)

    async def _checked(
        self,
        resp: httpx.Response,
        action: str,
        *,
        object_label: str,
        empty: Any = None,
    ) -> Any:
        """Raise SupabaseError for error statuses, otherwise decode the JSON body."""
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, action, object_label=object_label)
        if not resp.content:
            return empty
        try:
            return resp.json()
        except ValueError as exc:
            raise SupabaseError(
                action,
                status_code=502,
                message=f"Unreadable response body: {await _describe_response(resp)}",
                object_label=object_label,
            ) from exc

    async def select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        resp = await self.request("GET", table, params=params)
        return await self._checked(resp, "select", object_label=f"table={table}", empty=[])

    async def insert(
        self,
        table: str,
        payload: Dict[str, Any],
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST",
            table,
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        return await self._checked(resp, "insert", object_label=f"table={table}", empty=[])

    async def update(
        self,
        table: str,
        payload: Dict[str, Any],
        params: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "PATCH",
            table,
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        return await self._checked(resp, "update", object_label=f"table={table}", empty=[])

    async def rpc(self, fn: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        resp = await self.request("POST", f"rpc/{fn}", json=payload)
        return await self._checked(resp, "rpc", object_label=f"fn={fn}")

    async def delete(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        resp = await self.request(
            "DELETE",
            table,
            params=params,
            headers={"Prefer": "return=representation"},
        )
        return await self._checked(resp, "delete", object_label=f"table={table}", empty=[])

    # GoTrue admin endpoints; only valid on the service-role client.

    async def invite_user_by_email(
        self,
        email: str,
        *,
        data: Optional[Dict[str, Any]] = None,
        redirect_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"redirect_to": redirect_to} if redirect_to else None
        resp = await self.auth_request(
            "POST",
            "invite",
            params=params,
            json={"email": email, "data": data or {}},
        )
        body = await self._checked(resp, "invite", object_label="auth", empty={})
        # Older GoTrue versions wrap the user object.
        return body.get("user", body) if isinstance(body, dict) else {}

    async def list_users(self, *, page: int = 1, per_page: int = USERS_PAGE_SIZE) -> List[Dict[str, Any]]:
        resp = await self.auth_request(
            "GET",
            "admin/users",
            params={"page": page, "per_page": per_page},
        )
        body = await self._checked(resp, "list users", object_label="auth", empty={})
        if isinstance(body, list):
            return body
        return body.get("users") or []

    async def find_users_by_email(self, email: str) -> List[Dict[str, Any]]:
        """Every account whose email matches exactly, ignoring case."""
        target = email.strip().lower()
        matches: List[Dict[str, Any]] = []
        for page in range(1, USERS_MAX_PAGES + 1):
            users = await self.list_users(page=page)
            matches.extend(
                user for user in users if (user.get("email") or "").strip().lower() == target
            )
            if len(users) < USERS_PAGE_SIZE:
                break
        else:
            logger.warning(
                "user listing truncated",
                extra={"max_pages": USERS_MAX_PAGES, "page_size": USERS_PAGE_SIZE},
            )
        return matches


@lru_cache
def get_admin_client() -> SupabaseClient:
    config = get_config()
    service_role = config.service_role_key
    return SupabaseClient(
        base_url=config.base_url,
        anon_key=service_role,
        access_token=service_role,
        timeout=config.http_timeout,
    )


def get_user_client(access_token: str) -> SupabaseClient:
    config = get_config()
    return SupabaseClient(
        base_url=config.base_url,
        anon_key=config.supabase_anon_key or "",
        access_token=access_token,
        timeout=config.http_timeout,
    )


@dataclass
class AuthContext:
    user_id: str
    user_email: Optional[str]
    access_token: str
    supabase: SupabaseClient


async def get_auth_context(
    authorization: Optional[str] = Header(None),
) -> AuthContext:
    token = _parse_bearer_token(authorization)
    payload = await _verify_access_token(token)
    subject = payload.get("sub") if isinstance(payload, dict) else None
    try:
        user_id = parse_uuid(subject, "user_id")
    except ApiError as exc:
        raise ApiError(ErrorKind.UNAUTHENTICATED, "Token has no valid subject.") from exc
    user_email = payload.get("email")

    return AuthContext(
        user_id=user_id,
        user_email=user_email,
        access_token=token,
        supabase=get_user_client(token),
    )
