from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from jose import JWTError, jwt
import bcrypt
from sqlalchemy.orm import Session

from ..config import ACCESS_TOKEN_EXPIRE_MINUTES, SECRET_KEY
from ..database import get_db
from ..models import Profile
from ..schemas.user import AuthResponse, ProfileRead, TokenData, UserCreate

router = APIRouter()

ALGORITHM = "HS256"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8') if isinstance(hashed_password, str) else hashed_password
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt directly."""
    password_bytes = password.encode('utf-8')[:72]  # Truncate to 72 bytes (bcrypt limit)
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def authenticate_profile(db: Session, email: str, password: str) -> Optional[Profile]:
    """Authenticate a profile by email and password."""
    profile = db.query(Profile).filter(Profile.email == email).first()
    if not profile or not profile.hashed_password:
        return None
    if not verify_password(password, profile.hashed_password):
        return None
    return profile


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _get_token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return request.cookies.get("token")


def _decode_token(token: str) -> Optional[TokenData]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        if not email:
            return None
        return TokenData(email=email)
    except JWTError:
        return None


def _issue_token(profile: Profile, response: Response) -> dict:
    access_token = create_access_token(data={"sub": profile.email})
    response.set_cookie(
        key="token",
        value=access_token,
        httponly=True,
        secure=False,  # Set to True in production with HTTPS
        samesite="lax",
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": profile,
    }


async def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> Profile:
    """Get current profile from JWT token."""
    token = _get_token_from_request(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = _decode_token(token)
    if not token_data or not token_data.email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    profile = db.query(Profile).filter(Profile.email == token_data.email).first()
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return profile


@router.post("/signup", response_model=AuthResponse)
def signup(
    user: UserCreate,
    response: Response,
    db: Session = Depends(get_db),
):
    """Create a new account and its profile."""
    existing = db.query(Profile).filter(Profile.email == user.email).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    profile = Profile(
        email=user.email,
        full_name=user.full_name,
        hashed_password=get_password_hash(user.password),
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return _issue_token(profile, response)


@router.post("/signin", response_model=AuthResponse)
def signin(
    user: UserCreate,
    response: Response,
    db: Session = Depends(get_db),
):
    """Sign in and get JWT token."""
    profile = authenticate_profile(db, user.email, user.password)
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )
    return _issue_token(profile, response)


@router.post("/signout")
async def signout(response: Response):
    """Sign out and clear session cookie."""
    response.delete_cookie(key="token")
    return {"success": True}


@router.get("/me", response_model=ProfileRead)
def read_users_me(current_user: Profile = Depends(get_current_user)):
    """Get current user information."""
    return current_user
