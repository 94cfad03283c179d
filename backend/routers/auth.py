from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from auth import REFRESH_TOKEN, authenticate_user, get_current_user, issue_tokens, resolve_user_from_token
from database import get_db
from models import FestUser
from schemas import LoginRequest, RefreshTokenRequest, TokenResponse, UserResponse

router = APIRouter()


def _token_response(user: FestUser) -> TokenResponse:
    tokens = issue_tokens(user)
    return TokenResponse(
        access_token=tokens["access_token"],
        refresh_token=tokens["refresh_token"],
        user=UserResponse.model_validate(user),
    )


@router.post("/auth/login", response_model=TokenResponse)
def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate_user(db, credentials.user_id, credentials.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user ID or password")
    return _token_response(user)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh_token(request: RefreshTokenRequest, db: Session = Depends(get_db)):
    return _token_response(resolve_user_from_token(db, request.refresh_token, token_type=REFRESH_TOKEN))


@router.get("/auth/me", response_model=UserResponse)
def get_me(user: FestUser = Depends(get_current_user)):
    return UserResponse.model_validate(user)
