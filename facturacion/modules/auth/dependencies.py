"""
Dependencias de autenticación para FastAPI.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
import jwt

from facturacion.database.database import get_db
from facturacion.modules.auth.models import User
from facturacion.modules.auth.schemas import AuthContext, UserRole
from facturacion.core.config import settings

# Security scheme
security = HTTPBearer()

class AuthDependencies:
    """Dependencias de autenticación reutilizables."""

    @staticmethod
    def get_auth_context(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        db: Session = Depends(get_db)
    ) -> AuthContext:
        """
        Obtener la identidad y el rol del usuario desde el token JWT.
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No se pudieron validar las credenciales",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = jwt.decode(
                credentials.credentials,
                settings.APP_SECRET_STRING,
                algorithms=[settings.ALGORITHM]
            )
            user_id = payload.get("sub")
            if user_id is None:
                raise credentials_exception
            user_id = int(user_id)
        except (jwt.PyJWTError, ValueError):
            raise credentials_exception

        user = db.query(User).filter(User.id == user_id).first()
        if user is None or not user.is_active:
            raise credentials_exception

        return AuthContext(user_id=user.id, user_role=UserRole(user.role.value))

    @staticmethod
    def require_role(allowed_roles: list[str]):
        """
        Dependencia para requerir roles específicos.
        """
        def role_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            role = auth_context.user_role.value if auth_context.user_role else None
            if role not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Se requiere uno de estos roles: {', '.join(allowed_roles)}"
                )
            return auth_context
        return role_checker

    @staticmethod
    def require_editor():
        """Roles que pueden crear, modificar o eliminar documentos."""
        return AuthDependencies.require_role([UserRole.ADMINISTRATOR.value, UserRole.SALES.value])

    @staticmethod
    def require_any_role():
        """Cualquier usuario autenticado."""
        return AuthDependencies.require_role([role.value for role in UserRole])

# Instancias de dependencias
get_auth_context = AuthDependencies.get_auth_context
require_editor = AuthDependencies.require_editor
require_any_role = AuthDependencies.require_any_role
