"""
FastAPI Dependencies - Session and account resolution.

NO DICTIONARIES - All dependencies return typed objects.
"""

import re
import secrets
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, Response, status
from structlog import get_logger

from accountdash.exceptions import InvalidAccountError
from accountdash.models.domain import Member
from accountdash.services.api_client import normalize_email
from accountdash.services.checkout import CheckoutCoordinator
from accountdash.services.notifications import Notifier
from accountdash.services.runtime import DashboardRuntime

logger = get_logger(__name__)

SESSION_COOKIE = "dashboard_session"
_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")


@dataclass
class DashboardContext:
    """Everything a dashboard route needs for one session and account."""

    session_id: str
    account: str
    coordinator: CheckoutCoordinator
    notifier: Notifier


def get_runtime(request: Request) -> DashboardRuntime:
    return request.app.state.runtime


def get_session_id(request: Request, response: Response) -> str:
    """Session id from the cookie, issuing a new one for a fresh tab."""
    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id and _SESSION_ID_PATTERN.match(session_id):
        return session_id

    session_id = secrets.token_urlsafe(24)
    response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
    logger.debug("dashboard_session_issued")
    return session_id


async def get_account(runtime: DashboardRuntime = Depends(get_runtime)) -> str:
    """
    Resolve the signed-in account email through the auth provider.

    Raises 401 when there is no session or the email is unusable.
    """
    result = await runtime.auth.check_session()
    if not result.ok or not isinstance(result.data, Member):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.reason or "no_session",
        )
    try:
        return normalize_email(result.data.email)
    except InvalidAccountError as exc:
        logger.warning("member_without_valid_email", member_id=result.data.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


def _context(runtime: DashboardRuntime, session_id: str, account: str) -> DashboardContext:
    session = runtime.session(session_id)
    return DashboardContext(
        session_id=session_id,
        account=account,
        coordinator=runtime.coordinator(session_id, account),
        notifier=session.notifier,
    )


async def get_checkout_context(
    session_id: str = Depends(get_session_id),
    account: str = Depends(get_account),
    runtime: DashboardRuntime = Depends(get_runtime),
) -> DashboardContext:
    """Context for the return-from-checkout route, which reads pending intents itself."""
    return _context(runtime, session_id, account)


async def get_dashboard_context(
    session_id: str = Depends(get_session_id),
    account: str = Depends(get_account),
    runtime: DashboardRuntime = Depends(get_runtime),
) -> DashboardContext:
    """Context for dashboard routes; resumes leftover intents on first use."""
    context = _context(runtime, session_id, account)
    context.coordinator.resume()
    return context
