# cardstudio/delivery/api/templates.py
import asyncio
import dataclasses
import logging
import secrets
import threading
import traceback

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from cardstudio.config.database import get_db
from cardstudio.config.settings import settings
from cardstudio.delivery.schemas.body import (
    CompileRequest,
    DesignsUpdate,
    FieldsRequest,
    PrintBatchRequest,
    PrintOptions,
)
from cardstudio.domain.fields import extract_fields
from cardstudio.domain.scene import SceneError
from cardstudio.domain.sheet import STANDARD_LAYOUT
from cardstudio.infrastructure.database.store import RecordStore
from cardstudio.infrastructure.render.surface import encode_png

router = APIRouter()
security = HTTPBasic()
logger = logging.getLogger("uvicorn.error")

ENDPOINT_TIMEOUT_SECONDS = settings.BATCH_TIMEOUT + settings.REQUEST_TIMEOUT


def verify_basic_auth(creds: HTTPBasicCredentials = Depends(security)) -> None:
    ok_user = secrets.compare_digest(creds.username, settings.BASIC_AUTH_USERNAME)
    ok_pass = secrets.compare_digest(creds.password, settings.BASIC_AUTH_PASSWORD)
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Basic"},
        )


def get_service(request: Request):
    service = getattr(request.app.state, "template_service", None)
    if service is None:
        logger.error("Template service not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not ready. Please try again in a moment.",
        )
    return service


async def _run_print(request: Request, job, request_id: str):
    if await request.is_disconnected():
        logger.warning(f"[{request_id}] Client already disconnected")
        job.close()
        raise HTTPException(status_code=499, detail="Client closed request")
    try:
        result = await asyncio.wait_for(job, timeout=ENDPOINT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error(f"=== ENDPOINT TIMEOUT for {request_id} after {ENDPOINT_TIMEOUT_SECONDS}s ===")
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Batch processing timed out")
    except SceneError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"=== ENDPOINT ERROR for {request_id}: {e} ===\n{traceback.format_exc()}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error.",
        )
    logger.info(f"=== ENDPOINT SUCCESS for {request_id} ===")
    return JSONResponse(status_code=200, content={"output_files": result})


@router.post("/fields", dependencies=[Depends(verify_basic_auth)])
async def list_fields(body: FieldsRequest):
    return {"fields": sorted(extract_fields(body.document))}


@router.post("/compile", dependencies=[Depends(verify_basic_auth)])
async def compile_template(body: CompileRequest, service=Depends(get_service)):
    design = await service.compile_design(body.template.design(body.side), body.subject)
    return {"design": design}


@router.post("/render", dependencies=[Depends(verify_basic_auth)])
async def render_template(body: CompileRequest, service=Depends(get_service)):
    try:
        img = await service.render_card(body.template, body.subject, body.side)
    except SceneError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return Response(content=encode_png(img), media_type="image/png")


@router.post("/print-batch", dependencies=[Depends(verify_basic_auth)])
async def print_batch(request: Request, body: PrintBatchRequest, service=Depends(get_service)):
    request_id = body.id or "adhoc"
    logger.info(f"=== ENDPOINT START for {request_id}: {len(body.subjects)} subjects (threads={threading.active_count()}) ===")
    layout = dataclasses.replace(STANDARD_LAYOUT, rotate_to_fit=body.rotate_to_fit)
    job = service.print_batch(body.template, body.subjects, body.side, layout, body.footer, run_id=body.id)
    return await _run_print(request, job, request_id)


@router.post("/templates/{template_id}/print", dependencies=[Depends(verify_basic_auth)])
async def print_stored_template(template_id: str, request: Request, options: PrintOptions,
                                service=Depends(get_service), db: AsyncSession = Depends(get_db)):
    store = RecordStore(db)
    template = await store.get_template(template_id)
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    subjects = await store.list_subjects(template_id)
    logger.info(f"=== ENDPOINT START for template {template_id}: {len(subjects)} subjects ===")
    layout = dataclasses.replace(STANDARD_LAYOUT, rotate_to_fit=options.rotate_to_fit)
    job = service.print_batch(template, subjects, options.side, layout, options.footer)
    return await _run_print(request, job, template_id)


@router.put("/templates/{template_id}/designs", dependencies=[Depends(verify_basic_auth)])
async def save_designs(template_id: str, body: DesignsUpdate, db: AsyncSession = Depends(get_db)):
    saved = await RecordStore(db).save_designs(template_id, body.front_design, body.back_design)
    if not saved:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return {"status": "ok"}
