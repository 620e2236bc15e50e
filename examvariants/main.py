"""
FastAPI application entry point.
"""
from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from examvariants.core.config import settings
from examvariants.core.database import init_db
from examvariants.core.errors import NotFoundError, PersistenceError, PreconditionError, ValidationError
from examvariants.api.exams import router as exams_router
from examvariants.api.generations import router as generations_router
from examvariants.api.results import router as results_router
from examvariants.api.analysis import router as analysis_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    init_db()
    logger.info("Database initialized")
    yield
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(ValidationError)
async def upload_validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": {"message": exc.message, "type": "validation_error",
                           "stage": exc.stage, "code": exc.code}},
    )


@app.exception_handler(PreconditionError)
async def precondition_handler(request: Request, exc: PreconditionError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": {"message": exc.message, "type": "precondition_error"}},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": {"message": exc.message, "type": "not_found"}},
    )


@app.exception_handler(PersistenceError)
async def persistence_handler(request: Request, exc: PersistenceError):
    logger.error(f"Persistence failure: {exc.message}", exc_info=exc.cause or exc)
    content = {"error": "server error", "details": exc.message}
    if not settings.is_production():
        content["stack"] = "".join(traceback.format_exception(exc))
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    if settings.is_production():
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"message": "An internal error occurred", "type": "internal_error"}},
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"message": str(exc), "type": "internal_error", "debug": True}},
    )


@app.get("/health", tags=["Health"])
def health_check():
    return {"status": "healthy", "version": settings.APP_VERSION, "environment": settings.ENVIRONMENT}


app.include_router(exams_router, prefix=f"{settings.API_V1_PREFIX}/exams", tags=["exams"])
app.include_router(generations_router, prefix=f"{settings.API_V1_PREFIX}/generations", tags=["generations"])
app.include_router(analysis_router, prefix=f"{settings.API_V1_PREFIX}/generations", tags=["analysis"])
app.include_router(results_router, prefix=f"{settings.API_V1_PREFIX}/results", tags=["results"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("examvariants.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
