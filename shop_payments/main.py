import logging
import uvicorn
from fastapi import FastAPI
from .routers import payments, webhooks
from .db import init_db, close_db
from .config import settings
from .errors import register_exception_handlers
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Storefront Payment Orders")


class BrowserCORSMiddleware(CORSMiddleware):
    """CORS limited to the listed paths; other routes (the gateway webhook) get no CORS headers."""

    def __init__(self, app, paths=(), **kwargs):
        super().__init__(app, **kwargs)
        self.paths = frozenset(paths)

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"] not in self.paths:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


# CORS for the browser-facing endpoints only; preflight OPTIONS answers 200
app.add_middleware(
    BrowserCORSMiddleware,
    paths={route.path for route in payments.router.routes},
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(payments.router)
app.include_router(webhooks.router)


@app.get("/health")
async def health():
    """Whether the server-side secrets are present; values are never returned."""
    missing = settings.missing_secrets()
    return {"ok": not missing, "missing": missing}


@app.on_event("startup")
async def on_startup():
    # init db tables if not using migrations
    await init_db()


@app.on_event("shutdown")
async def on_shutdown():
    await close_db()

if __name__ == "__main__":
    uvicorn.run("shop_payments.main:app", host=settings.app_host, port=settings.app_port, reload=(settings.env != "production"))
