import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.routers import admin, whatsapp
from app.services.cache_service import cache_service
from config.settings import settings

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Conectar a Redis al iniciar la aplicación
    await cache_service.connect()
    yield
    # shutdown
    await cache_service.close()

# Configurar rate limiter
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="WhatsApp Orders Bot API",
    description="API para tomar pedidos por WhatsApp: webhook de Twilio + panel de pedidos",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.DEBUG
)

# Configurar rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Configurar CORS más específico para producción
if settings.DEBUG:
    # En desarrollo, permitir todos los orígenes
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

# Recibos PDF generados tras confirmar un pedido
os.makedirs(settings.RECEIPTS_DIR, exist_ok=True)
app.mount("/receipts", StaticFiles(directory=settings.RECEIPTS_DIR), name="receipts")

# Incluir routers
app.include_router(whatsapp.router, prefix="/webhook", tags=["webhook"])
app.include_router(admin.router, prefix="/api", tags=["admin"])


@app.get("/")
async def root():
    return {
        "message": "WhatsApp Orders Bot API running!",
        "docs": "/docs",
        "status": "active"
    }

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "whatsapp-orders-bot",
        "redis": cache_service.connected,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000, log_level="debug" if settings.DEBUG else "info")
