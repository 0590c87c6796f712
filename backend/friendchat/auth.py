from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext

from .batch import Mutation
from .config import get_settings
from .models import Credential

settings = get_settings()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# 1. Account ids are minted here; the rest of the app treats them as opaque
def new_uid() -> str:
    return uuid4().hex

# 2. Hash / verify passwords
def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def credential(uid: str, email: str, password: str):
    """Batch mutation storing the login secret next to the new account."""
    return Mutation("set", Credential, uid, {"email": email.strip(), "hashed_password": get_password_hash(password)})

# 3. Create / read JWT tokens; "sub" carries the account uid
def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def decode_access_token(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub") or None
