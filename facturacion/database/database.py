from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from facturacion.core.config import settings
import logging

logger = logging.getLogger(__name__)

engine_options = {
    "pool_pre_ping": True,
    "echo": settings.DEBUG and settings.ENVIRONMENT != "test",
}
if settings.is_sqlite:
    engine_options["connect_args"] = {"check_same_thread": False}
else:
    engine_options.update(pool_size=10, max_overflow=20)

# Engine síncrono: la facturación necesita transacciones con bloqueo de filas
sync_engine = create_engine(settings.database_url, **engine_options)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)

Base = declarative_base()

def get_db():
    """Genera una sesión de base de datos por request."""
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()
