"""
=============================================================================
AUTH.PY — Verificación de tokens
=============================================================================
Las cuentas, el login y el registro los gestiona la plataforma alojada.
Aquí solo VERIFICAMOS el JWT que la app envía en cada petición:

  Authorization: Bearer eyJ...

  - sub (subject): el id del perfil (UUID)
  - exp (expiration): cuándo caduca
  - aud (audience): "authenticated" en la plataforma (opcional aquí)

Si el token es válido → se inyecta el Profile en el endpoint.
Si no → 401.
"""

import os
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from database import get_db
from models import Profile

# ─────────────────────────────────────────────────────────────────────────────
# CONFIGURACIÓN
# ─────────────────────────────────────────────────────────────────────────────

SECRET_KEY = os.getenv("SECRET_KEY", "umbradex-dev-secret-key-cambiar-en-produccion")
# SECRET_KEY → el "JWT secret" del proyecto en la plataforma

ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

JWT_AUDIENCE = os.getenv("JWT_AUDIENCE") or None
# JWT_AUDIENCE → si se define, el token debe traer ese "aud"

ACCESS_TOKEN_EXPIRE_MINUTES = 60

ADMIN_USER_IDS = {uid.strip() for uid in os.getenv("ADMIN_USER_IDS", "").split(",") if uid.strip()}
# ADMIN_USER_IDS → ids de perfil (separados por comas) con acceso a las rutas de administración


# ─────────────────────────────────────────────────────────────────────────────
# TOKENS JWT
# ─────────────────────────────────────────────────────────────────────────────

def create_access_token(user_id: str, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """
    Crea un token con el mismo formato que emite la plataforma.
    Se usa en desarrollo y en los tests.
    """
    expire = datetime.utcnow() + timedelta(minutes=expires_minutes)
    to_encode = {
        "sub": str(user_id),
        "exp": expire,
    }
    if JWT_AUDIENCE:
        to_encode["aud"] = JWT_AUDIENCE
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """
    Decodifica un token JWT y devuelve sus datos.
    Si el token es inválido o ha expirado, devuelve None.
    """
    try:
        if JWT_AUDIENCE:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], audience=JWT_AUDIENCE)
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], options={"verify_aud": False})
    except JWTError:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCIA: OBTENER PERFIL ACTUAL
# ─────────────────────────────────────────────────────────────────────────────

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> Profile:
    """
    Extrae el perfil del token JWT.

      @app.post("/missions/sync")
      def sync(user: Profile = Depends(get_current_user)):
          ...
    """
    payload = decode_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token without user id"
        )

    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found"
        )

    return profile


def get_admin_user(user: Profile = Depends(get_current_user)) -> Profile:
    """Como get_current_user, pero solo deja pasar a los ids de ADMIN_USER_IDS"""
    if user.id not in ADMIN_USER_IDS:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user
