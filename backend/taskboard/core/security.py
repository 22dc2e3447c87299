"""Tenancy guard — resolves the calling account and user for every request."""

from dataclasses import dataclass

from fastapi import Header, HTTPException, status


@dataclass(frozen=True, slots=True)
class AccountScope:
    account_id: int
    user_id: int


def _positive_int(raw: str | None, header: str) -> int:
    try:
        value = int(raw) if raw is not None else 0
    except ValueError:
        value = 0
    if value <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "validationError", "message": f"{header} header must be a positive integer"},
        )
    return value


async def get_current_account(
    x_account_id: str | None = Header(None),
    x_user_id: str | None = Header(None),
) -> AccountScope:
    """Every task route depends on this; there is no route without an account."""
    return AccountScope(
        account_id=_positive_int(x_account_id, "X-Account-Id"),
        user_id=_positive_int(x_user_id, "X-User-Id"),
    )
