"""
API Routes - access, trial and magic-link endpoints.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from companion_accounts.api.dependencies import (
    get_entitlement_resolver,
    get_magic_link_service,
    get_read_only_resolver,
    get_trial_meter,
)
from companion_accounts.exceptions import (
    DeliveryError,
    TokenExpiredError,
    TokenNotFoundError,
    ValidationError,
)
from companion_accounts.models.api import (
    AccessCheckResponse,
    AccessSummaryResponse,
    Character,
    CompleteLinkRequest,
    CompleteLinkResponse,
    InitiateLinkRequest,
    InitiateLinkResponse,
    TrialCheckResponse,
    TrialDecrementResponse,
    TrialRequest,
    VerifyLinkResponse,
)
from companion_accounts.services.entitlements import EntitlementResolver
from companion_accounts.services.magic_link import MagicLinkService
from companion_accounts.services.trial_meter import TrialMeter

router = APIRouter()

INVALID_LINK_MESSAGE = "Invalid or expired link"
EXPIRED_LINK_MESSAGE = "Link has expired. Please request a new one."


# =============================================================================
# Access
# =============================================================================


@router.get(
    "/access/{chat_id}/{character}",
    response_model=AccessCheckResponse,
    response_model_exclude_none=True,
)
async def check_access(
    chat_id: str,
    character: Character,
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
) -> AccessCheckResponse:
    """
    Access decision for one chat and character.

    Creates the trial on first sight; never spends a trial message.
    """
    decision = await resolver.check_access(chat_id, character)
    return AccessCheckResponse(
        has_access=decision.has_access,
        reason=decision.reason,
        trial_remaining=decision.trial_remaining,
        account_id=decision.account_id,
        email=decision.email,
    )


@router.get("/access/{chat_id}", response_model=AccessSummaryResponse)
async def list_access(
    chat_id: str,
    resolver: EntitlementResolver = Depends(get_read_only_resolver),
) -> AccessSummaryResponse:
    """Account and granted characters for a chat; hasAccount=false if unlinked."""
    summary = await resolver.list_access(chat_id)
    return AccessSummaryResponse(
        has_account=summary.has_account,
        account_id=summary.account_id,
        email=summary.email,
        subscription_status=summary.subscription_status,
        characters=list(summary.characters),
    )


# =============================================================================
# Trial
# =============================================================================


@router.post("/trial/check", response_model=TrialCheckResponse)
async def check_trial(
    request: TrialRequest,
    trial_meter: TrialMeter = Depends(get_trial_meter),
) -> TrialCheckResponse:
    trial = await trial_meter.check(request.chat_id, request.character)
    return TrialCheckResponse(
        has_trial_remaining=trial.has_trial_remaining,
        messages_remaining=trial.messages_remaining,
        is_new_trial=trial.is_new_trial,
    )


@router.post("/trial/decrement", response_model=TrialDecrementResponse)
async def decrement_trial(
    request: TrialRequest,
    trial_meter: TrialMeter = Depends(get_trial_meter),
) -> TrialDecrementResponse:
    """Spend one trial message. At zero this is a no-op reporting trialExpired."""
    remaining = await trial_meter.consume(request.chat_id, request.character)
    return TrialDecrementResponse(
        success=True,
        messages_remaining=remaining,
        trial_expired=remaining == 0,
    )


# =============================================================================
# Magic Link
# =============================================================================


@router.post("/link/initiate", response_model=InitiateLinkResponse)
async def initiate_link(
    request: InitiateLinkRequest,
    magic_links: MagicLinkService = Depends(get_magic_link_service),
) -> InitiateLinkResponse:
    """
    Issue a magic link and email it.

    The token is also returned so the chat side can correlate the request.
    """
    try:
        token = await magic_links.initiate(
            email=request.email,
            chat_id=request.chat_id,
            character=request.character,
            first_name=request.first_name,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except DeliveryError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send email. Please try again.",
        ) from exc

    return InitiateLinkResponse(
        success=True,
        message="Magic link sent! Check your email.",
        token=token,
    )


@router.get(
    "/link/verify/{token}",
    response_model=VerifyLinkResponse,
    response_model_exclude_none=True,
)
async def verify_link(
    token: str,
    magic_links: MagicLinkService = Depends(get_magic_link_service),
) -> VerifyLinkResponse | JSONResponse:
    """Peek at a link without consuming it."""
    try:
        intent = await magic_links.verify(token)
    except TokenNotFoundError:
        return _invalid_link(INVALID_LINK_MESSAGE)
    except TokenExpiredError:
        return _invalid_link(EXPIRED_LINK_MESSAGE)

    return VerifyLinkResponse(
        valid=True,
        email=intent.email,
        chat_id=intent.chat_id,
        character=intent.character,
        first_name=intent.first_name,
    )


def _invalid_link(message: str) -> JSONResponse:
    body = VerifyLinkResponse(valid=False, error=message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


@router.post("/link/complete", response_model=CompleteLinkResponse)
async def complete_link(
    request: CompleteLinkRequest,
    magic_links: MagicLinkService = Depends(get_magic_link_service),
) -> CompleteLinkResponse:
    """Redeem a link: create or load the account, link the chat, grant characters."""
    try:
        account_id = await magic_links.complete(
            request.token,
            request.characters,
            stripe_customer_id=request.stripe_customer_id,
        )
    except TokenNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_LINK_MESSAGE
        ) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    return CompleteLinkResponse(account_id=account_id)
