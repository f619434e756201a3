import logging
from typing import Any, Optional

from fastapi import FastAPI, Body, Depends, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from config import APP_VERSION, configure_logging
from db import Base, engine, get_db
from errors import BadPayload, GroupError
import models  # noqa: F401  (registers tables on Base.metadata)
from group_service import MISSING, authorize, create_group, fetch_group, group_meta, update_group

logger = logging.getLogger(__name__)

configure_logging()
Base.metadata.create_all(engine)

ALLOW_METHODS = ["GET", "POST", "PUT", "OPTIONS"]
ALLOW_HEADERS = ["Content-Type", "x-pass"]

# =========================
# Schemas
# =========================
class GroupCreateIn(BaseModel):
    id: str = ""
    pass_: str = Field("", alias="pass")

class GroupUpdateIn(BaseModel):
    version: Optional[int] = None       # accepted for compatibility; the server assigns versions
    baseVersion: Optional[int] = None
    payload: Any = None

# =========================
# FastAPI app
# =========================
app = FastAPI(title="Patient Notes Group Store", version=APP_VERSION)

@app.middleware("http")
async def bare_options(request: Request, call_next):
    # CORS preflights are answered by CORSMiddleware; any other OPTIONS gets an empty 204
    if request.method == "OPTIONS":
        return Response(status_code=204)
    return await call_next(request)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=ALLOW_METHODS,
    allow_headers=ALLOW_HEADERS,
)

@app.exception_handler(GroupError)
async def group_error_handler(request: Request, exc: GroupError):
    return JSONResponse(exc.body(), status_code=exc.status_code)

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    message = "Bad payload" if request.method == "PUT" else "Bad request"
    return JSONResponse({"error": message}, status_code=400)

@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    # runs outside CORSMiddleware, so the origin header is set here
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        {"error": "Internal error", "detail": str(exc)},
        status_code=500,
        headers={"Access-Control-Allow-Origin": "*"},
    )

# -------- Groups --------
@app.post("/group", status_code=201)
def create(body: GroupCreateIn, db: Session = Depends(get_db)):
    return create_group(db, body.id, body.pass_)

@app.get("/group")
def read(
    group_id: str = Query("", alias="id"),
    x_pass: str = Header(""),
    db: Session = Depends(get_db),
):
    return fetch_group(db, group_id, x_pass)

@app.put("/group")
def write(
    body: Any = Body(None),
    group_id: str = Query("", alias="id"),
    x_pass: str = Header(""),
    db: Session = Depends(get_db),
):
    # access is checked before the body shape
    authorize(db, group_id, x_pass)
    try:
        update = GroupUpdateIn.model_validate(body)
    except ValidationError:
        raise BadPayload()
    payload = update.payload if "payload" in update.model_fields_set else MISSING
    return update_group(db, group_id, x_pass, payload=payload, base_version=update.baseVersion)

@app.get("/group/meta")
def meta(group_id: str = Query("", alias="id"), db: Session = Depends(get_db)):
    return group_meta(db, group_id)
