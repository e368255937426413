import logging
from uuid import uuid4

from fastapi import APIRouter, HTTPException, Depends, status
from fastapi.security import OAuth2PasswordRequestForm

from marketplace.models.schemas import UserCreate, User, utc_now
from marketplace.db.firebase_ops import get_firestore_ops_instance, FirestoreBaseModel
from marketplace.core.security import get_password_hash, verify_password, create_access_token, Token
from marketplace.core.dependencies import oauth2_scheme, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

SELF_REGISTER_ROLES = ("client", "student")


@router.post("/register", response_model=User, status_code=status.HTTP_201_CREATED)
async def register_user(user_in: UserCreate):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()

    if user_in.role not in SELF_REGISTER_ROLES:
        raise HTTPException(status_code=400, detail="Role must be 'client' or 'student'")

    email = user_in.email.lower()
    if firestore_ops.query(collection_name="users", field="email", operator="==", value=email):
        raise HTTPException(status_code=400, detail="Email already registered")

    if firestore_ops.query(collection_name="users", field="username", operator="==", value=user_in.username):
        raise HTTPException(status_code=400, detail="Username already taken")

    user_id = uuid4()
    user_for_response = User(
        user_id=user_id,
        **user_in.model_dump(exclude={"password", "email"}),
        email=email,
    )

    # The stored record is the public User plus the password hash
    user_record_to_save = user_for_response.model_dump()
    user_record_to_save["hashed_password"] = get_password_hash(user_in.password)

    saved_user_id = firestore_ops.save(collection_name="users", data_model=user_record_to_save, document_id=str(user_id))
    if not saved_user_id:
        raise HTTPException(status_code=500, detail="Could not create user")

    logger.info("Registered %s %s", user_for_response.role, user_id)
    return user_for_response


@router.post("/login", response_model=Token)
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()

    # The username field accepts either the username or the email address
    if "@" in form_data.username:
        users_found = firestore_ops.query(collection_name="users", field="email", operator="==", value=form_data.username.lower())
    else:
        users_found = firestore_ops.query(collection_name="users", field="username", operator="==", value=form_data.username)

    if not users_found:
        raise HTTPException(
            status_code=400,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_data = users_found[0]
    user_id_from_db = user_data.get("id")

    if not user_data.get("hashed_password"):
        raise HTTPException(
            status_code=500,
            detail="User account improperly configured.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not verify_password(form_data.password, user_data.get("hashed_password")):
        raise HTTPException(
            status_code=400,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user_data.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account deactivated")

    if not firestore_ops.update(collection_name="users", document_id=user_id_from_db, updates={"last_login_date": utc_now()}):
        logger.warning("Could not update last_login_date for user %s", user_id_from_db)

    access_token = create_access_token(data={"sub": user_id_from_db})
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=User)
async def read_users_me(token: str = Depends(oauth2_scheme)):
    firestore_ops: FirestoreBaseModel = get_firestore_ops_instance()
    return get_current_user(firestore_ops, token)


@router.post("/logout")
async def logout():
    # Tokens are stateless; the client discards its copy.
    return {"message": "Logout successful. Please discard your token."}
