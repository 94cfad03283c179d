from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
import bcrypt
import hashlib
import os
from dotenv import load_dotenv
from pathlib import Path
from database import get_db
from models import FestUser

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"
MIN_SECRET_LENGTH = 32
KNOWN_WEAK_SECRETS = frozenset({"changeme", "change_me", "secret", "jwt_secret", "password", "fest_secret"})


def _read_secret() -> str:
    secret = (os.environ.get('JWT_SECRET_KEY') or '').strip()
    if not secret:
        raise RuntimeError('JWT_SECRET_KEY must be set before the API starts')
    if len(secret) < MIN_SECRET_LENGTH or secret.lower() in KNOWN_WEAK_SECRETS:
        raise RuntimeError(f'JWT_SECRET_KEY must be a random value of at least {MIN_SECRET_LENGTH} characters')
    return secret


SECRET_KEY = _read_secret()
ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get('ACCESS_TOKEN_EXPIRE_MINUTES', 30))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.environ.get('REFRESH_TOKEN_EXPIRE_DAYS', 7))

security = HTTPBearer()


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _password_digest(password: str) -> bytes:
    # bcrypt only reads 72 bytes, so hash the full password down first
    return hashlib.sha256(str(password).encode('utf-8')).digest()


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(_password_digest(password), bcrypt.gensalt()).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(_password_digest(plain_password), hashed_password.encode('utf-8'))
    except ValueError:
        return False


def authenticate_user(db: Session, user_id: str, password: str) -> Optional[FestUser]:
    user = db.query(FestUser).filter(FestUser.user_id == user_id).first()
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user


def _encode(user: FestUser, token_type: str, lifetime: timedelta) -> str:
    claims = {
        "sub": user.user_id,
        "role": user.role.value,
        "type": token_type,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def issue_tokens(user: FestUser) -> dict:
    return {
        "access_token": _encode(user, ACCESS_TOKEN, timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
        "refresh_token": _encode(user, REFRESH_TOKEN, timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)),
    }


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise _credentials_error()


def resolve_user_from_token(db: Session, token: str, token_type: str = ACCESS_TOKEN) -> FestUser:
    """Return the user a token was issued to, or raise 401."""
    payload = decode_token(token)
    if payload.get("type") != token_type:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")

    subject = payload.get("sub")
    if not subject:
        raise _credentials_error()
    user = db.query(FestUser).filter(FestUser.user_id == subject).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> FestUser:
    return resolve_user_from_token(db, credentials.credentials)
