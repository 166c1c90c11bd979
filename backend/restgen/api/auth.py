import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from restgen.api.deps import get_identity, get_token_service
from restgen.auth import Identity, TokenService, hash_password, verify_password
from restgen.database import get_session
from restgen.errors import AuthenticationError, StorageError
from restgen.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

DEFAULT_ROLE = "user"


class CredentialsRequest(BaseModel):
    email: str
    password: str


class RegisterResponse(BaseModel):
    id: int
    email: str
    roles: list[str]


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    id: int | str
    roles: list[str]


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(body: CredentialsRequest, session: Session = Depends(get_session)):
    user = User(
        email=body.email,
        password_hash=hash_password(body.password),
        roles=DEFAULT_ROLE,
    )
    try:
        session.add(user)
        session.commit()
        session.refresh(user)
    except SQLAlchemyError as e:
        session.rollback()
        logger.warning("Registration failed for %s: %s", body.email, e)
        raise StorageError(f"Could not register user: {getattr(e, 'orig', e)}") from e
    return RegisterResponse(id=user.id, email=user.email, roles=user.role_list)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: CredentialsRequest,
    session: Session = Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
):
    user = session.exec(select(User).where(User.email == body.email)).first()
    if not user or not verify_password(body.password, user.password_hash):
        raise AuthenticationError("Invalid credentials")
    return TokenResponse(token=tokens.issue(user.id, user.role_list))


@router.get("/me", response_model=MeResponse)
async def me(identity: Identity = Depends(get_identity)):
    return MeResponse(id=identity.id, roles=identity.roles)
