"""
API Routes - FastAPI endpoints for the account dashboard.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from collections.abc import Awaitable

from fastapi import APIRouter, Depends, HTTPException, Request, status
from structlog import get_logger

from accountdash.api.dependencies import (
    DashboardContext,
    get_checkout_context,
    get_dashboard_context,
    get_runtime,
    get_session_id,
)
from accountdash.exceptions import (
    BackendError,
    CheckoutError,
    InvalidAccountError,
    InvalidPurchaseError,
)
from accountdash.models.api import (
    AccountActionResponse,
    AccountActionResult,
    ActivateLicenseRequest,
    AddSiteRequest,
    AuthResponse,
    CheckoutRedirectResponse,
    CheckoutReturnResponse,
    LoginCodeRequest,
    LoginRequest,
    NotificationResponse,
    PurchaseDomainsRequest,
    PurchaseLicensesRequest,
    RemoveSiteRequest,
    SessionResponse,
    SnapshotEntryResponse,
    SnapshotResponse,
    VerifyCodeRequest,
)
from accountdash.models.domain import AuthResult, CheckoutRedirect, Member, ResourceKind, Snapshot
from accountdash.services.account_actions import AccountActions
from accountdash.services.checkout import parse_checkout_return
from accountdash.services.runtime import DashboardRuntime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _snapshot_response(snapshot: Snapshot, reconciling: bool) -> SnapshotResponse:
    return SnapshotResponse(
        kind=snapshot.kind,
        count=snapshot.count,
        entries=[
            SnapshotEntryResponse(
                key=entry.key,
                label=entry.label,
                status=entry.status,
                site=entry.site,
                billing_period=entry.billing_period,
                created_at=entry.created_at,
                processing=entry.placeholder,
            )
            for entry in snapshot.entries
        ],
        reconciling=reconciling,
    )


def _auth_response(result: AuthResult, failure_status: int) -> AuthResponse:
    if not result.ok:
        raise HTTPException(status_code=failure_status, detail=result.reason or "auth_failed")
    return AuthResponse(ok=True)


async def _session_response(runtime: DashboardRuntime) -> SessionResponse:
    result = await runtime.auth.check_session()
    email = result.data.email if result.ok and isinstance(result.data, Member) else None
    return SessionResponse(
        authenticated=result.ok,
        email=email,
        handle_state=runtime.acquirer.state,
        reason=result.reason,
    )


# ============================================================================
# Session and Auth
# ============================================================================


@router.get("/session", response_model=SessionResponse)
async def get_session(runtime: DashboardRuntime = Depends(get_runtime)) -> SessionResponse:
    """Current sign-in state and auth provider handle state."""
    return await _session_response(runtime)


@router.post("/session/retry", response_model=SessionResponse)
async def retry_session(runtime: DashboardRuntime = Depends(get_runtime)) -> SessionResponse:
    """Retry auth provider acquisition after it was reported unavailable."""
    await runtime.acquirer.retry()
    return await _session_response(runtime)


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    request: LoginRequest, runtime: DashboardRuntime = Depends(get_runtime)
) -> AuthResponse:
    result = await runtime.auth.login_with_password(request.email, request.password)
    return _auth_response(result, status.HTTP_401_UNAUTHORIZED)


@router.post("/auth/code", response_model=AuthResponse)
async def send_login_code(
    request: LoginCodeRequest, runtime: DashboardRuntime = Depends(get_runtime)
) -> AuthResponse:
    """Send a one-time login code (signs the email up when it is unknown)."""
    result = await runtime.auth.send_login_code(request.email)
    return _auth_response(result, status.HTTP_400_BAD_REQUEST)


@router.post("/auth/code/verify", response_model=AuthResponse)
async def verify_login_code(
    request: VerifyCodeRequest, runtime: DashboardRuntime = Depends(get_runtime)
) -> AuthResponse:
    result = await runtime.auth.verify_login_code(request.email, request.code)
    return _auth_response(result, status.HTTP_401_UNAUTHORIZED)


@router.post("/auth/logout", response_model=AuthResponse)
async def logout(
    session_id: str = Depends(get_session_id),
    runtime: DashboardRuntime = Depends(get_runtime),
) -> AuthResponse:
    result = await runtime.auth.logout()
    runtime.end_session(session_id)
    return AuthResponse(ok=result.ok, reason=result.reason)


# ============================================================================
# Dashboard Data
# ============================================================================


async def _load_snapshot(
    runtime: DashboardRuntime, context: DashboardContext, kind: ResourceKind
) -> SnapshotResponse:
    try:
        snapshot = await runtime.cache.ensure(kind, context.account)
    except BackendError as exc:
        # Initial data load failure is blocking for the view
        logger.error("snapshot_load_failed", kind=kind.value, error=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    reconciling = context.coordinator.reconciler.is_active(kind)
    return _snapshot_response(snapshot, reconciling)


@router.get("/dashboard", response_model=SnapshotResponse)
async def get_dashboard(
    context: DashboardContext = Depends(get_dashboard_context),
    runtime: DashboardRuntime = Depends(get_runtime),
) -> SnapshotResponse:
    """Domains owned by the account."""
    return await _load_snapshot(runtime, context, ResourceKind.DOMAIN)


@router.get("/licenses", response_model=SnapshotResponse)
async def get_licenses(
    context: DashboardContext = Depends(get_dashboard_context),
    runtime: DashboardRuntime = Depends(get_runtime),
) -> SnapshotResponse:
    """License keys owned by the account, including processing placeholders."""
    return await _load_snapshot(runtime, context, ResourceKind.LICENSE)


# ============================================================================
# Purchases and Checkout Return
# ============================================================================


def _redirect_response(redirect: CheckoutRedirect) -> CheckoutRedirectResponse:
    return CheckoutRedirectResponse(kind=redirect.kind, checkout_url=redirect.checkout_url)


@router.post("/licenses/purchase", response_model=CheckoutRedirectResponse)
async def purchase_licenses(
    request: PurchaseLicensesRequest,
    context: DashboardContext = Depends(get_dashboard_context),
) -> CheckoutRedirectResponse:
    """
    Create a license checkout session and record the pending purchase.

    The caller navigates to checkout_url; the return lands on /v1/checkout/return.
    """
    try:
        redirect = await context.coordinator.begin_license_purchase(
            request.quantity, request.billing_period
        )
    except InvalidPurchaseError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except InvalidAccountError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except CheckoutError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    except BackendError as exc:
        context.notifier.show_error(exc.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    return _redirect_response(redirect)


@router.post("/domains/purchase", response_model=CheckoutRedirectResponse)
async def purchase_domains(
    request: PurchaseDomainsRequest,
    context: DashboardContext = Depends(get_dashboard_context),
) -> CheckoutRedirectResponse:
    try:
        redirect = await context.coordinator.begin_domain_purchase(
            request.domains, request.billing_period
        )
    except InvalidPurchaseError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except InvalidAccountError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except CheckoutError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    except BackendError as exc:
        context.notifier.show_error(exc.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    return _redirect_response(redirect)


# ============================================================================
# Account Actions
# ============================================================================


async def _run_action(
    context: DashboardContext, action: Awaitable[AccountActionResponse]
) -> AccountActionResult:
    try:
        result = await action
    except InvalidPurchaseError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except InvalidAccountError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except BackendError as exc:
        context.notifier.show_error(exc.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    return AccountActionResult(ok=True, message=result.message)


def _actions(runtime: DashboardRuntime, context: DashboardContext) -> AccountActions:
    return AccountActions(runtime.api_client, runtime.cache, context.account)


@router.post("/licenses/activate", response_model=AccountActionResult)
async def activate_license(
    request: ActivateLicenseRequest,
    context: DashboardContext = Depends(get_dashboard_context),
    runtime: DashboardRuntime = Depends(get_runtime),
) -> AccountActionResult:
    """Bind an unused license key to a site."""
    actions = _actions(runtime, context)
    return await _run_action(
        context, actions.activate_license(request.license_key, request.site_domain)
    )


@router.post("/domains/add", response_model=AccountActionResult)
async def add_site(
    request: AddSiteRequest,
    context: DashboardContext = Depends(get_dashboard_context),
    runtime: DashboardRuntime = Depends(get_runtime),
) -> AccountActionResult:
    actions = _actions(runtime, context)
    return await _run_action(context, actions.add_site(request.site, request.price))


@router.post("/domains/remove", response_model=AccountActionResult)
async def remove_site(
    request: RemoveSiteRequest,
    context: DashboardContext = Depends(get_dashboard_context),
    runtime: DashboardRuntime = Depends(get_runtime),
) -> AccountActionResult:
    """Remove a site (cancels its subscription item at the backend)."""
    actions = _actions(runtime, context)
    return await _run_action(context, actions.remove_site(request.site, request.subscription_id))


@router.get("/checkout/return", response_model=CheckoutReturnResponse)
async def checkout_return(
    request: Request,
    context: DashboardContext = Depends(get_checkout_context),
) -> CheckoutReturnResponse:
    """Landing point after the external checkout page redirects back."""
    signal = parse_checkout_return(request.query_params)
    reconciling = context.coordinator.handle_return(signal)
    return CheckoutReturnResponse(
        status=signal.status.value if signal.status else None,
        reconciling=reconciling,
    )


@router.get("/notifications", response_model=list[NotificationResponse])
async def get_notifications(
    context: DashboardContext = Depends(get_dashboard_context),
) -> list[NotificationResponse]:
    """Drain queued success/info/error messages for this session."""
    return [
        NotificationResponse(
            type=n.type,
            message=n.message,
            created_at=n.created_at.isoformat(),
        )
        for n in context.notifier.drain()
    ]
