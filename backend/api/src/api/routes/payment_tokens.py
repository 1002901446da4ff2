"""Saved card endpoints (BENEFIT hosted page tokens).

Only masked metadata ever leaves the vault; the token itself is decrypted
solely to initiate a payment.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_token_vault, get_user_sub
from api.models.common import SuccessMessage
from api.models.payments import PaymentTokenListResponse
from shared.services.token_vault import TokenVault

router = APIRouter(tags=["payment-tokens"])


@router.get(
    "/payment-tokens",
    summary="List saved cards",
    response_model=PaymentTokenListResponse,
)
def list_payment_tokens(
    user_sub: str = Depends(get_user_sub),
    token_vault: TokenVault = Depends(get_token_vault),
) -> PaymentTokenListResponse:
    """Active cards of the caller, default card first."""
    return PaymentTokenListResponse(tokens=token_vault.list_tokens(user_sub))


@router.delete(
    "/payment-tokens/{token_id}",
    summary="Delete saved card",
    response_model=SuccessMessage,
    responses={404: {"description": "Card not found or not owned by the caller"}},
)
def delete_payment_token(
    token_id: str,
    user_sub: str = Depends(get_user_sub),
    token_vault: TokenVault = Depends(get_token_vault),
) -> SuccessMessage:
    token_vault.delete_token(token_id, user_sub)
    return SuccessMessage(message="Saved card deleted")
