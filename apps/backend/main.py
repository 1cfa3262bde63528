import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobtracker.config import settings
from jobtracker.context import TrackerContext, build_context, get_context
from jobtracker.errors import JobTrackerError
from jobtracker.health import check_database, check_supabase
from jobtracker.routers import analytics, auth, jobs, pipeline, profile

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(context: TrackerContext | None = None) -> FastAPI:
    """Build the application.

    Args:
        context: Prebuilt client context (tests inject one); when omitted,
            the context is built from settings at startup

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: Build the backend bindings and pick up an existing session
        logger.info(f"Starting {settings.app_name} backend")
        ctx = context or await build_context(settings)
        app.state.context = ctx
        await ctx.start()
        logger.info(f"Client context ready ({ctx.backend} backend)")
        yield
        # Shutdown: Stop change feeds and close connections
        logger.info(f"Shutting down {settings.app_name} backend")
        await ctx.close()

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Job application tracker: jobs, pipeline views and analytics",
        version="0.1.0",
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_cors_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(JobTrackerError)
    async def job_tracker_error_handler(request: Request, exc: JobTrackerError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # Include routers
    app.include_router(auth.router)
    app.include_router(jobs.router)
    app.include_router(analytics.router)
    app.include_router(pipeline.router)
    app.include_router(profile.router)

    @app.get("/")
    async def root():
        return {"message": f"{settings.app_name} API - Ready"}

    @app.get("/health")
    async def health_check(ctx: TrackerContext = Depends(get_context)):
        """Health check for the configured backend."""
        if ctx.backend == "supabase":
            name = "supabase"
            result = await check_supabase(settings.supabase_url or "", settings.supabase_anon_key or "")
        else:
            name = "database"
            result = await check_database(ctx.engine)

        dependency = result.status

        return {
            "status": "healthy" if dependency == "connected" else "degraded",
            "backend": ctx.backend,
            "dependencies": {name: dependency},
            "session": {
                "authenticated": ctx.is_authenticated,
                "jobs_loaded": len(ctx.jobs.jobs),
                "loading": ctx.jobs.loading,
                "error": ctx.jobs.error,
            },
        }

    return app


app = create_app()
