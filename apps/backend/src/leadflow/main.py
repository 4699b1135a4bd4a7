import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import get_settings
from .connectors import close_delivery_layer, create_delivery_layer
from .enrollment import EnrollmentNotFoundError, EnrollmentService, EnrollmentStore, WorkflowNotFoundError
from .models import (
    AdvanceRequest,
    EnrollRequest,
    HealthResponse,
    PreviewRequest,
    WorkflowCreateRequest,
    WorkflowUpdateRequest,
)
from .workflow.runner import run_workflow
from .workflow.schema import WorkflowDefinitionError, WorkflowRecord
from .workflow.store import WorkflowStore
from .workflow.validation import validate_definition

load_dotenv()

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = settings.data_dir or BACKEND_DIR / "data"

workflow_store = WorkflowStore(DATA_DIR / "workflows")
enrollment_store = EnrollmentStore(DATA_DIR / "enrollments.db")
delivery = create_delivery_layer(settings)
service = EnrollmentService(
    workflow_store,
    enrollment_store,
    delivery.channels,
    default_timezone=settings.default_timezone,
    timeout_seconds=settings.side_effect_timeout_seconds,
    max_delay_ms=settings.max_wait_delay_ms,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await service.start()
    logger.info("LeadFlow started in %s connector mode", settings.connector_mode)
    try:
        yield
    finally:
        await service.stop()
        await close_delivery_layer(delivery)


app = FastAPI(
    title="LeadFlow API",
    description="Lead follow-up workflows: validate, enroll, pause on waits and resume on time",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowDefinitionError)
async def definition_error_handler(request: Request, exc: WorkflowDefinitionError):
    return JSONResponse(status_code=400, content=exc.error.model_dump(by_alias=True))


@app.exception_handler(WorkflowNotFoundError)
async def workflow_not_found_handler(request: Request, exc: WorkflowNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Workflow not found"})


@app.exception_handler(EnrollmentNotFoundError)
async def enrollment_not_found_handler(request: Request, exc: EnrollmentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Enrollment not found"})


def _dump(model) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _load_workflow(workflow_id: str) -> WorkflowRecord:
    wf = workflow_store.load(workflow_id)
    if wf is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return wf


@app.get("/api/health", response_model=HealthResponse)
def health():
    return HealthResponse(
        status="ok",
        connector_mode=settings.connector_mode,
        armed_timers=len(service.scheduler.armed_ids()),
    )


# --- Workflow definitions ---

@app.post("/api/workflows/validate")
def validate_workflow(definition: dict[str, Any]):
    """Validate a definition and return the linear chain it compiles to."""
    chain = validate_definition(definition)
    return {"valid": True, "chain": _dump(chain)}


@app.post("/api/workflows")
def create_workflow(request: WorkflowCreateRequest):
    if request.status != "draft":
        validate_definition(request.definition)
    wf = workflow_store.save(
        WorkflowRecord(
            id=str(uuid.uuid4()),
            name=request.name,
            description=request.description,
            status=request.status,
            definition=request.definition,
        )
    )
    return _dump(wf)


@app.put("/api/workflows/{workflow_id}")
def update_workflow(workflow_id: str, request: WorkflowUpdateRequest):
    wf = _load_workflow(workflow_id)
    updated = wf.model_copy(update=request.model_dump(exclude_none=True, exclude={"definition"}))
    if request.definition is not None:
        updated.definition = request.definition
    if updated.status != "draft":
        validate_definition(updated.definition)
    return _dump(workflow_store.save(updated))


@app.get("/api/workflows")
def list_workflows():
    return [_dump(wf) for wf in workflow_store.list_all()]


@app.get("/api/workflows/{workflow_id}")
def get_workflow(workflow_id: str):
    return _dump(_load_workflow(workflow_id))


@app.delete("/api/workflows/{workflow_id}")
def delete_workflow(workflow_id: str):
    deleted = workflow_store.delete(workflow_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return {"status": "deleted", "workflow_id": workflow_id}


@app.post("/api/workflows/{workflow_id}/preview")
async def preview_workflow(workflow_id: str, request: Optional[PreviewRequest] = None):
    """Run the whole workflow once, right now: waits are recorded, not slept, and the send window is ignored."""
    request = request or PreviewRequest()
    wf = _load_workflow(workflow_id)
    report = await run_workflow(
        wf.definition,
        service.channels,
        lead=request.lead,
        overrides=request.overrides,
        pause_at_wait=False,
        ignore_send_window=True,
        default_timezone=settings.default_timezone,
        timeout_seconds=settings.side_effect_timeout_seconds,
    )
    return {**report.to_dict(), "markdown": report.to_markdown(wf.name)}


# --- Enrollments ---

@app.post("/api/workflows/{workflow_id}/enrollments")
async def enroll_lead(workflow_id: str, request: EnrollRequest):
    enrollment, report = await service.enroll(
        workflow_id,
        request.lead,
        source=request.source,
        overrides=request.overrides,
    )
    return {"enrollment": _dump(enrollment), "report": report.to_dict()}


@app.get("/api/workflows/{workflow_id}/enrollments")
def list_enrollments(workflow_id: str, limit: int = 50):
    _load_workflow(workflow_id)
    return [_dump(e) for e in service.list_for_workflow(workflow_id, limit)]


@app.post("/api/enrollments/resume-due")
async def resume_due_enrollments():
    """Advance every paused enrollment whose due time has passed (for external cron)."""
    resumed = await service.resume_due()
    return {"resumed": resumed}


@app.get("/api/enrollments/{enrollment_id}")
def get_enrollment(enrollment_id: str):
    return _dump(service.describe(enrollment_id))


@app.get("/api/enrollments/{enrollment_id}/report", response_class=PlainTextResponse)
def get_enrollment_report(enrollment_id: str):
    return service.report_markdown(enrollment_id)


@app.post("/api/enrollments/{enrollment_id}/advance")
async def advance_enrollment(enrollment_id: str, request: Optional[AdvanceRequest] = None):
    request = request or AdvanceRequest()
    report = await service.advance(
        enrollment_id,
        ignore_send_window=request.ignore_send_window,
        lead=request.lead,
    )
    return {"enrollment": _dump(service.describe(enrollment_id)), "report": report.to_dict()}


@app.delete("/api/enrollments/{enrollment_id}")
async def delete_enrollment(enrollment_id: str):
    deleted = await service.delete(enrollment_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    return {"status": "deleted", "enrollment_id": enrollment_id}
