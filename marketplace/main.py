import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from marketplace.core.config import get_settings, warn_on_default_secret
from marketplace.routers import auth as auth_router
from marketplace.routers import users as users_router
from marketplace.routers import projects as projects_router
from marketplace.routers import works as works_router
from marketplace.routers import admin as admin_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
warn_on_default_secret(settings)

app = FastAPI(
    title=settings.app_name,
    description="Clients submit projects to students; completed work is delivered once the UPI payment is verified.",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router.router)
app.include_router(users_router.router)
app.include_router(projects_router.router)
app.include_router(works_router.router)
app.include_router(admin_router.router)


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.app_name}"}


def main():
    """Run the FastAPI application."""
    uvicorn.run(
        "marketplace.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
