import uvicorn
from fastapi import FastAPI, Depends, Header
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from user_service.database import SessionLocal, engine, Base
from user_service import models
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict, field_validator
from typing import List, Optional
import logging
import re

from pos_common.config import configure_logging
from pos_common.context import (
    BRANCH_ADMIN, ROLES, SUPER_ADMIN, RequestContext, get_context, require_roles,
)
from pos_common.envelope import Envelope, success
from pos_common.errors import (
    AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError,
    ValidationError, install_error_handlers,
)
from pos_common.security import bearer_token, create_access_token, decode_access_token

configure_logging()
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="user_service")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


# --- MODELS ---
class AccountBase(BaseModel):
    email: str
    password: str
    name: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        regex = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(regex, v):
            raise ValueError('Invalid email address')
        return v.lower()

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        if len(v) < 8:
            raise ValueError('Password must be at least 8 characters')
        if not re.search(r"[A-Z]", v):
            raise ValueError('Password needs an uppercase letter')
        if not re.search(r"[a-z]", v):
            raise ValueError('Password needs a lowercase letter')
        if not re.search(r"\d", v):
            raise ValueError('Password needs a digit')
        if not re.search(r"[@$!%*?&]", v):
            raise ValueError('Password needs a symbol (@$!%*?&)')
        return v


class AccountCreate(AccountBase):
    role: str
    branch_id: Optional[int] = None
    terminal: Optional[int] = None
    phone: Optional[str] = None

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        if v is None:
            return v
        if not re.match(r'^\+?\d{10,15}$', v):
            raise ValueError('Invalid phone number (10-15 digits)')
        return v

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v not in ROLES:
            raise ValueError(f"Role must be one of: {', '.join(ROLES)}")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str


class ActiveChange(BaseModel):
    is_active: bool


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str
    branch_id: Optional[int] = None
    terminal: Optional[int] = None
    phone: Optional[str] = None
    is_active: bool


class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    id: int
    role: str
    branch_id: Optional[int] = None
    terminal: Optional[int] = None


def _new_account(db: Session, data: AccountCreate) -> models.Account:
    if db.query(models.Account).filter(models.Account.email == data.email).first():
        raise ConflictError("Email exists")
    account = models.Account(
        email=data.email,
        hashed_password=get_password_hash(data.password),
        name=data.name,
        role=data.role,
        branch_id=data.branch_id,
        terminal=data.terminal,
        phone=data.phone,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    logger.info("Account %s created (%s, branch %s)", account.email, account.role, account.branch_id)
    return account


# --- API AUTH ---
@app.post("/bootstrap", response_model=Envelope[AccountResponse])
def bootstrap(req: AccountBase, db: Session = Depends(get_db)):
    """Create the first super-admin; refused once any account exists."""
    if db.query(models.Account).count() > 0:
        raise PermissionDeniedError("Accounts already exist")
    data = AccountCreate(**req.model_dump(), role=SUPER_ADMIN)
    return success(AccountResponse.model_validate(_new_account(db, data)))


@app.post("/login", response_model=Envelope[TokenResponse])
def login(req: LoginRequest, db: Session = Depends(get_db)):
    account = db.query(models.Account).filter(models.Account.email == req.email.lower()).first()
    if not account or not verify_password(req.password, account.hashed_password):
        raise AuthenticationError("Incorrect email/password")
    if not account.is_active:
        raise AuthenticationError("Account is deactivated")

    token_data = {
        "sub": account.email,
        "id": account.id,
        "role": account.role,
        "branch_id": account.branch_id,
        "terminal": account.terminal,
    }
    return success({
        "access_token": create_access_token(token_data),
        "token_type": "bearer",
        "id": account.id,
        "role": account.role,
        "branch_id": account.branch_id,
        "terminal": account.terminal,
    })


@app.get("/verify")
def verify_token(authorization: str = Header(None)):
    return success(decode_access_token(bearer_token(authorization)))


# --- API ACCOUNTS ---
@app.post("/accounts", response_model=Envelope[AccountResponse])
def create_account(data: AccountCreate, ctx: RequestContext = Depends(get_context), db: Session = Depends(get_db)):
    require_roles(ctx, BRANCH_ADMIN)
    if not ctx.is_super_admin:
        # Branch admins staff their own branch only
        if data.role in (SUPER_ADMIN, BRANCH_ADMIN):
            raise PermissionDeniedError("Only a super-admin can create admin accounts")
        data.branch_id = ctx.branch_id
        if data.terminal is None:
            data.terminal = ctx.terminal
    elif data.role != SUPER_ADMIN and data.branch_id is None:
        raise ValidationError("Branch accounts need a branch_id")
    return success(AccountResponse.model_validate(_new_account(db, data)))


@app.get("/accounts", response_model=Envelope[List[AccountResponse]])
def get_accounts(branch_id: Optional[int] = None, ctx: RequestContext = Depends(get_context),
                 db: Session = Depends(get_db)):
    require_roles(ctx, BRANCH_ADMIN)
    query = db.query(models.Account)
    scope = ctx.scope_branch(branch_id)
    if scope is not None:
        query = query.filter(models.Account.branch_id == scope)
    return success([AccountResponse.model_validate(a) for a in query.order_by(models.Account.id).all()])


@app.put("/accounts/{account_id}/active", response_model=Envelope[AccountResponse])
def set_account_active(account_id: int, payload: ActiveChange, ctx: RequestContext = Depends(get_context),
                       db: Session = Depends(get_db)):
    require_roles(ctx, BRANCH_ADMIN)
    account = db.query(models.Account).filter(models.Account.id == account_id).first()
    if not account or not ctx.can_see(account.branch_id):
        raise NotFoundError("Account not found")
    if account.id == ctx.actor_id:
        raise ValidationError("You cannot deactivate your own account")
    if not ctx.is_super_admin and account.role == BRANCH_ADMIN:
        raise PermissionDeniedError("Only a super-admin can change admin accounts")
    account.is_active = payload.is_active
    db.commit()
    db.refresh(account)
    return success(AccountResponse.model_validate(account))


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8001)
