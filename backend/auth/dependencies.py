from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.auth.accounts import Account, AccountRole, lookup_account
from backend.database import get_db

security = HTTPBearer(auto_error=False)


def resolve_token(token: str, db: Session) -> Account:
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not role:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    try:
        account_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=401, detail="Invalid token subject") from exc

    account = lookup_account(db, role, account_id)
    if account is None:
        raise HTTPException(status_code=401, detail="Account not found")
    return account


def get_current_account(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> Account:
    token = credentials.credentials if credentials else request.cookies.get("token")
    if not token:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    return resolve_token(token, db)


def require_role(*roles: AccountRole):
    allowed = set(roles)

    def dependency(account: Account = Depends(get_current_account)) -> Account:
        if account.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail=f"Account role {account.role.value} is not authorized to access this route",
            )
        return account

    return dependency
