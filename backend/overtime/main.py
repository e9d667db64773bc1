from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from overtime.core.config import settings
from overtime.core.errors import OvertimeError, ValidationError
from overtime.routers import audit_entries, maintenance, overtime_requests

OPENAPI_TAGS = [
    {
        "name": "Overtime Requests",
        "description": "Submit, approve, reject, cancel and delete overtime requests.",
    },
    {"name": "Audit Entries", "description": "Read and verify the hash-chained audit trail."},
    {"name": "Maintenance", "description": "Enqueue an immediate pass of a maintenance sweep."},
]

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Overtime request engine. Employees claim non-overlapping overtime windows, "
        "approvers decide them through an ordered chain, and every change lands in "
        "a tamper-evident audit trail."
    ),
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Idempotent-Replayed"],
)


@app.exception_handler(OvertimeError)
async def overtime_error_handler(request: Request, exc: OvertimeError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": jsonable_encoder(exc.to_dict())},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    error = ValidationError("Request validation failed", {"errors": exc.errors()})
    return JSONResponse(
        status_code=error.status_code,
        content={"error": jsonable_encoder(error.to_dict())},
    )


app.include_router(
    overtime_requests.router,
    prefix="/v1/overtime-requests",
    tags=["Overtime Requests"],
)
app.include_router(
    audit_entries.router,
    prefix="/v1/audit-entries",
    tags=["Audit Entries"],
)
app.include_router(
    maintenance.router,
    prefix="/v1/maintenance",
    tags=["Maintenance"],
)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "domain": settings.APP_DOMAIN,
        "status": "running",
    }
