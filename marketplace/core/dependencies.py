from fastapi import HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from marketplace.core.security import decode_access_token
from marketplace.db.firebase_ops import FirestoreBaseModel
from marketplace.models.schemas import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_current_user(firestore_ops: FirestoreBaseModel, token: str) -> User:
    """
    Resolves the bearer token to the stored user.

    Raises 401 for an invalid or expired token, 404 when the token's user no
    longer exists and 403 when the account has been deactivated.
    """
    user_id_from_token = decode_access_token(token)
    if not user_id_from_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    current_user = firestore_ops.get(collection_name="users", document_id=user_id_from_token, pydantic_model=User)
    if not current_user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Authenticated user not found")

    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account deactivated")

    return current_user


def require_role(user: User, *roles: str, detail: str = "Not authorized to perform this action") -> None:
    if user.role not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def require_admin(user: User) -> None:
    require_role(user, "admin", detail="Admin access required")
