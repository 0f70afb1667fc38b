from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

# Import database components
from facturacion.database.database import sync_engine, Base
from facturacion.common.exceptions import FacturacionError

# Import routers
from facturacion.modules.invoices.router import router as invoices_router
from facturacion.modules.inventory.router import entries_router, stock_outs_router

# Import models for table creation
import facturacion.modules.auth.models
import facturacion.modules.contracts.models
import facturacion.modules.products.models
import facturacion.modules.inventory.models
import facturacion.modules.invoices.models

from facturacion.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Facturación API",
    description="Facturas, contratos e inventario con control de existencias",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Add your frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Errores de esquema con la misma forma que los errores de dominio."""
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        errors.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"errors": errors})


@app.exception_handler(FacturacionError)
async def domain_exception_handler(request: Request, exc: FacturacionError):
    return JSONResponse(status_code=exc.status_code, content={"errors": exc.errors})


# Include routers
app.include_router(invoices_router)
app.include_router(entries_router)
app.include_router(stock_outs_router)

# Create database tables (only for development - schema is managed externally in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)

@app.get("/")
async def read_root():
    return {
        "message": "Facturación API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}

@app.on_event("startup")
async def startup_event():
    logger.info("Facturación API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Facturación API shutting down...")
