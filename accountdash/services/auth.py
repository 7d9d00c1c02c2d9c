"""
Auth Service - session and login operations against the provider handle.

Every operation returns an AuthResult instead of raising: the handle's method
surface is not statically known, so each operation probes its own ranked
list of equivalent capabilities before calling one.
"""

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

from structlog import get_logger

from accountdash.models.domain import AuthResult, Member
from accountdash.services.capabilities import invoke, probe, resolve_path
from accountdash.services.handle import HandleAcquirer, await_ready

logger = get_logger(__name__)

IDENTITY_CAPABILITIES: tuple[str, ...] = ("get_current_member", "member", "current_member")
LOGOUT_CAPABILITIES: tuple[str, ...] = ("logout", "log_out", "sign_out")
TOKEN_CAPABILITIES: tuple[str, ...] = ("get_member_cookie", "get_token")

# Email locations on a member payload, most specific first
EMAIL_PATHS: tuple[str, ...] = ("data.auth.email", "data.email", "email", "_email")

NOT_FOUND_CODES = frozenset({"MEMBER_NOT_FOUND", "passwordless-email-not-found"})


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def get_user_email(member: Any) -> str | None:
    """Extract the member's email, lowercased and trimmed."""
    if member is None:
        return None
    for path in EMAIL_PATHS:
        email = resolve_path(member, path)
        if isinstance(email, str) and email.strip():
            return email.strip().lower()
    return None


def normalize_member(raw: Any) -> Member | None:
    """Unwrap a {"data": ...} envelope and keep members that have an id or email."""
    if raw is None:
        return None
    data = _field(raw, "data")
    member = data if data is not None else raw
    member_id = _field(member, "id") or _field(member, "_id")
    email = get_user_email(raw)
    if not member_id and not email:
        return None
    return Member(id=str(member_id) if member_id else None, email=email, raw=member)


def interpret_response(response: Any, default_error: str) -> AuthResult:
    """Map a provider response ({data} / {errors}) to an AuthResult."""
    data = _field(response, "data")
    if data:
        return AuthResult.success(data)
    errors = _field(response, "errors")
    if errors:
        first = errors[0]
        message = _field(first, "message") if not isinstance(first, str) else first
        return AuthResult.failure(message or default_error)
    return AuthResult.success()


def _error_details(response_or_exc: Any) -> tuple[str, str]:
    if isinstance(response_or_exc, BaseException):
        message = str(response_or_exc)
        code = str(getattr(response_or_exc, "code", "") or "")
        return message, code
    errors = _field(response_or_exc, "errors") or []
    first = errors[0] if errors else None
    if isinstance(first, str):
        return first, ""
    return str(_field(first, "message") or ""), str(_field(first, "code") or "")


def _is_not_found(message: str, code: str) -> bool:
    lowered = message.lower()
    return "not found" in lowered or "does not exist" in lowered or code in NOT_FOUND_CODES


class AuthService:
    """
    Session and login operations with typed failures.

    Usage:
        auth = AuthService(acquirer)
        result = await auth.check_session()
        if result.ok:
            email = result.data.email
    """

    def __init__(
        self,
        acquirer: HandleAcquirer,
        acquire_timeout: float = 5.0,
        session_ready_timeout: float = 2.0,
    ) -> None:
        self._acquirer = acquirer
        self._acquire_timeout = acquire_timeout
        self._session_ready_timeout = session_ready_timeout

    async def _get_handle(self) -> tuple[Any, AuthResult | None]:
        try:
            outcome = await asyncio.wait_for(self._acquirer.acquire(), self._acquire_timeout)
        except TimeoutError:
            logger.warning("auth_handle_timeout", timeout_seconds=self._acquire_timeout)
            return None, AuthResult.failure("provider_timeout")
        if not outcome.ok:
            return None, AuthResult.failure(outcome.reason or "provider_unavailable")
        return outcome.handle, None

    async def _run_first_available(
        self,
        operation: str,
        ranked: Sequence[tuple[str, dict[str, Any]]],
        default_error: str,
    ) -> AuthResult:
        """Invoke the first capability present in `ranked` and interpret its response."""
        handle, failure = await self._get_handle()
        if failure is not None:
            return failure

        for name, kwargs in ranked:
            capability = probe(handle, (name,))
            if capability is None:
                continue
            try:
                response = await invoke(capability, **kwargs)
            except Exception as exc:
                logger.warning(f"{operation}_failed", capability=name, error=str(exc))
                return AuthResult.failure(str(exc) or default_error)
            return interpret_response(response, default_error)

        logger.warning(f"{operation}_unsupported", tried=[name for name, _ in ranked])
        return AuthResult.failure("operation_unavailable")

    async def check_session(self) -> AuthResult:
        """Return the current member (AuthResult.data is a Member) or a typed failure."""
        try:
            handle, failure = await self._get_handle()
            if failure is not None:
                return failure

            await await_ready(handle, self._session_ready_timeout)

            for name in IDENTITY_CAPABILITIES:
                capability = probe(handle, (name,), allow_values=True)
                if capability is None:
                    continue
                try:
                    raw = await invoke(capability)
                except Exception as exc:
                    logger.warning("member_lookup_failed", capability=name, error=str(exc))
                    continue
                member = normalize_member(raw)
                if member is not None:
                    return AuthResult.success(member)

            return AuthResult.failure("no_session")
        except Exception as exc:
            logger.error("session_check_failed", error=str(exc))
            return AuthResult.failure("session_check_error")

    async def get_user_email(self) -> str | None:
        result = await self.check_session()
        if result.ok and isinstance(result.data, Member):
            return result.data.email
        return None

    async def login_with_password(self, email: str, password: str) -> AuthResult:
        return await self._run_first_available(
            "password_login",
            [("login_member_email_password", {"email": email, "password": password})],
            "Login failed",
        )

    async def signup_with_password(self, email: str, password: str) -> AuthResult:
        return await self._run_first_available(
            "password_signup",
            [("signup_member_email_password", {"email": email, "password": password})],
            "Signup failed",
        )

    async def send_login_code(self, email: str) -> AuthResult:
        """
        Send a passwordless login code.

        The login variant only works for existing members; when it reports
        "not found" (or raises) the signup variant is tried, which also sends
        a code to existing members.
        """
        handle, failure = await self._get_handle()
        if failure is not None:
            return failure

        login = probe(handle, ("send_member_login_passwordless_email",))
        if login is not None:
            try:
                response = await invoke(login, email=email)
            except Exception as exc:
                logger.info("login_code_failed_trying_signup", error=str(exc))
            else:
                result = interpret_response(response, "Failed to send code")
                if result.ok:
                    return result
                message, code = _error_details(response)
                if not _is_not_found(message, code):
                    return result
                logger.info("login_code_member_not_found", code=code)

        signup = probe(handle, ("send_member_signup_passwordless_email",))
        if signup is not None:
            try:
                response = await invoke(signup, email=email)
            except Exception as exc:
                logger.warning("signup_code_failed", error=str(exc))
                return AuthResult.failure(str(exc) or "Failed to send code")
            return interpret_response(response, "Failed to send code")

        if login is None:
            return AuthResult.failure("operation_unavailable")
        return AuthResult.failure("Failed to send code")

    async def verify_login_code(self, email: str, code: str) -> AuthResult:
        return await self._run_first_available(
            "login_code_verification",
            [
                ("login_member_passwordless", {"email": email, "passwordless_token": code}),
                ("verify_code", {"email": email, "code": code}),
            ],
            "Invalid code",
        )

    async def logout(self) -> AuthResult:
        handle, failure = await self._get_handle()
        if failure is not None:
            return failure

        capability = probe(handle, LOGOUT_CAPABILITIES)
        if capability is None:
            logger.warning("logout_unsupported")
            return AuthResult.failure("operation_unavailable")
        try:
            await invoke(capability)
        except Exception as exc:
            logger.warning("logout_failed", capability=capability.name, error=str(exc))
            return AuthResult.failure(str(exc) or "Logout failed")
        return AuthResult.success()

    async def get_session_token(self) -> AuthResult:
        handle, failure = await self._get_handle()
        if failure is not None:
            return failure

        for name in TOKEN_CAPABILITIES:
            capability = probe(handle, (name,))
            if capability is None:
                continue
            try:
                token = await invoke(capability)
            except Exception as exc:
                logger.warning("session_token_failed", capability=name, error=str(exc))
                continue
            if token:
                return AuthResult.success(token)
        return AuthResult.failure("no_token")
