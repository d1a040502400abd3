"""FastAPI app for the nodecms content API."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import json
import logging
import time
from contextlib import asynccontextmanager

import psycopg2

from app.auth import AuthMiddleware, hash_password, issue_token, public_user, verify_password
from app.content_types import build_registry
from app.db import close_pool, get_db_stats, reset_db_stats
from app.form_render import load_node_options, render_form, validate_form
from app.stores import MemoryNodeStore, MemoryUserStore, StoreConflict
from nodecms.fields import FieldType
from node_engine import NodeEngine, NodeEngineError, NodeTypeNotFound
from path_resolver import PathResolver
from type_registry import Registry


logger = logging.getLogger("nodecms")
_auth_logger = logging.getLogger("nodecms.auth")
logging.basicConfig(level=logging.INFO)

USE_DB = os.getenv("USE_DB", "").strip() == "1"
APP_ENV = os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"
IS_DEV = APP_ENV == "dev"
_DEV_JWT_SECRET = "nodecms-dev-secret"
JWT_SECRET = os.getenv("JWT_SECRET", "").strip() or _DEV_JWT_SECRET
JWT_EXPIRES_HOURS = float(os.getenv("JWT_EXPIRES_HOURS", "24"))
REQ_SLOW_MS = float(os.getenv("NODECMS_REQ_SLOW_MS", "250"))

_LOCAL_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
}
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("NODECMS_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

router = APIRouter()


def _error_response(message: str, status: int = 400, errors: list | None = None) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "message": message}
    if errors is not None:
        body["errors"] = errors
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(data: Any = None, status: int = 200) -> JSONResponse:
    return JSONResponse(jsonable_encoder({"success": True, "data": data}), status_code=status)


async def _safe_json(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return None


def _resolve_actor(request: Request) -> dict | JSONResponse:
    user = getattr(request.state, "user", None)
    if not user:
        return _error_response("Authentication required", status=401)
    return user


def _require_admin(actor: dict | None) -> JSONResponse | None:
    if not actor or not actor.get("isAdmin"):
        return _error_response("Admin access required", status=403)
    return None


def _admin(request: Request) -> dict | JSONResponse:
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    denied = _require_admin(actor)
    if denied:
        return denied
    return actor


def _engine(request: Request) -> NodeEngine:
    return request.app.state.engine


def _block_defs(registry: Registry) -> dict[str, dict]:
    return {name: block_type.to_dict() for name, block_type in registry.blocks.list_all()}


async def _node_options_for(engine: NodeEngine, fields: list) -> dict[str, list]:
    options: dict[str, list] = {}
    for item in fields:
        if item.type == FieldType.NODE:
            options[item.name] = await load_node_options(engine, item)
    return options


# health / auth


@router.get("/health")
async def health() -> dict:
    return {"success": True}


@router.post("/auth/register")
async def register(request: Request):
    body = await _safe_json(request)
    if not isinstance(body, dict):
        return _error_response("Invalid JSON body")
    username = str(body.get("username") or "").strip()
    email = str(body.get("email") or "").strip().lower()
    password = body.get("password") or ""
    if not username or not email or not password:
        return _error_response("All fields are required")
    if "confirmPassword" in body and body.get("confirmPassword") != password:
        return _error_response("Passwords do not match")
    if not isinstance(password, str) or len(password) < 6:
        return _error_response("Password must be at least 6 characters long")
    if len(password.encode("utf-8")) > 72:
        return _error_response("Password must be at most 72 bytes long")
    if not 3 <= len(username) <= 50:
        return _error_response("Username must be between 3 and 50 characters")
    if not _EMAIL_RE.match(email):
        return _error_response("Email address is not valid")
    users = request.app.state.user_store
    if users.get_by_username(username):
        return _error_response("Username already exists")
    if users.get_by_email(email):
        return _error_response("Email already registered")
    role = "admin" if users.count() == 0 else "user"
    try:
        user = users.create(username, email, hash_password(password), role=role)
    except StoreConflict as exc:
        if exc.column == "email":
            return _error_response("Email already registered")
        return _error_response("Username already exists")
    _auth_logger.info("user_registered id=%s role=%s", user["id"], role)
    token = issue_token(user, request.app.state.jwt_secret, request.app.state.jwt_expires_hours)
    return _ok_response({"user": public_user(user), "token": token}, status=201)


@router.post("/auth/login")
async def login(request: Request):
    body = await _safe_json(request)
    if not isinstance(body, dict):
        return _error_response("Invalid JSON body")
    username = str(body.get("username") or "").strip()
    password = body.get("password") or ""
    if not username or not password:
        return _error_response("Username and password are required")
    users = request.app.state.user_store
    user = users.get_by_username(username)
    if user is None and "@" in username:
        user = users.get_by_email(username.lower())
    if user is None or not verify_password(str(password), user.get("password_hash")):
        _auth_logger.warning("login_failed username=%s", username)
        return _error_response("Invalid credentials", status=401)
    if not user.get("is_active", True):
        return _error_response("Account is disabled", status=401)
    user = users.touch_login(user["id"]) or user
    token = issue_token(user, request.app.state.jwt_secret, request.app.state.jwt_expires_hours)
    return _ok_response({"user": public_user(user), "token": token})


@router.get("/auth/me")
async def me(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    return _ok_response({"user": actor})


# admin node type routes


@router.get("/node-types")
async def list_node_types(request: Request):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    engine = _engine(request)
    return _ok_response([engine.describe(name) for name in engine.registry.nodes.names()])


@router.get("/node-types/{type_name}/fields")
async def node_type_fields(request: Request, type_name: str):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    return _ok_response(_engine(request).describe(type_name))


@router.get("/node-types/{type_name}/nodes")
async def admin_list_nodes(
    request: Request, type_name: str, page: str | None = None, limit: str | None = None, search: str | None = None
):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    result = await _engine(request).list(type_name, page=page, limit=limit, search=search)
    return _ok_response(result)


@router.get("/node-types/{type_name}/nodes/{node_id}")
async def admin_get_node(request: Request, type_name: str, node_id: str):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    return _ok_response(await _engine(request).get(type_name, node_id))


@router.post("/node-types/{type_name}/nodes")
async def admin_create_node(request: Request, type_name: str):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    engine = _engine(request)
    engine.node_type(type_name)
    body = await _safe_json(request)
    if body is None:
        return _error_response("Invalid JSON body")
    node = await engine.create(type_name, body, actor=actor)
    return _ok_response(node, status=201)


@router.put("/node-types/{type_name}/nodes/{node_id}")
async def admin_update_node(request: Request, type_name: str, node_id: str):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    body = await _safe_json(request)
    if body is None:
        return _error_response("Invalid JSON body")
    node = await _engine(request).update(type_name, node_id, body, actor=actor)
    return _ok_response(node)


@router.delete("/node-types/{type_name}/nodes/{node_id}")
async def admin_delete_node(request: Request, type_name: str, node_id: str):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    return _ok_response(await _engine(request).delete(type_name, node_id))


@router.get("/node-types/{type_name}/form", response_class=HTMLResponse)
async def admin_create_form(request: Request, type_name: str):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    engine = _engine(request)
    node_type = engine.node_type(type_name)
    values = {f.name: f.default for f in node_type.fields if f.default is not None}
    html = render_form(
        node_type.fields,
        values,
        block_defs=_block_defs(engine.registry),
        node_options=await _node_options_for(engine, node_type.fields),
        action=f"/node-types/{type_name}/nodes",
        title=f"New {node_type.settings.display_name or type_name}",
        node_type=type_name,
    )
    return HTMLResponse(html)


@router.get("/node-types/{type_name}/nodes/{node_id}/form", response_class=HTMLResponse)
async def admin_edit_form(request: Request, type_name: str, node_id: str):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    engine = _engine(request)
    node_type = engine.node_type(type_name)
    node = await engine.get(type_name, node_id)
    html = render_form(
        node_type.fields,
        node,
        block_defs=_block_defs(engine.registry),
        node_options=await _node_options_for(engine, node_type.fields),
        action=f"/node-types/{type_name}/nodes/{node['id']}",
        method="post",
        title=f"Edit {node_type.settings.display_name or type_name}",
        node_type=type_name,
    )
    return HTMLResponse(html)


@router.post("/node-types/{type_name}/form/validate")
async def admin_validate_form(request: Request, type_name: str):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    node_type = _engine(request).node_type(type_name)
    body = await _safe_json(request)
    if not isinstance(body, dict):
        return _error_response("Invalid JSON body")
    return _ok_response({"errors": validate_form(node_type.fields, body)})


@router.get("/node-options")
async def node_options(request: Request, types: str | None = None, search: str | None = None):
    actor = _admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    type_names = [t.strip() for t in (types or "").split(",") if t.strip()]
    field = {"type": "node", "name": "nodeOptions", "nodeTypes": type_names}
    return _ok_response(await load_node_options(_engine(request), field, search))


# public node routes


@router.get("/nodes")
async def public_node_types(request: Request):
    return _ok_response(_engine(request).list_types())


@router.get("/nodes/resolve")
@router.get("/nodes/resolve/{path:path}")
async def resolve_path(request: Request, path: str = ""):
    result = await request.app.state.resolver.resolve(path)
    return _ok_response(result)


@router.get("/nodes/{type_name}")
async def public_list_nodes(
    request: Request, type_name: str, page: str | None = None, limit: str | None = None, search: str | None = None
):
    result = await _engine(request).list(type_name, page=page, limit=limit, search=search)
    return _ok_response(result)


@router.get("/nodes/{type_name}/{node_id}")
async def public_get_node(request: Request, type_name: str, node_id: str):
    return _ok_response(await _engine(request).get(type_name, node_id))


@router.get("/nodes/{type_name}/{node_id}/url")
async def public_node_url(request: Request, type_name: str, node_id: str):
    url = await _engine(request).node_url(type_name, node_id)
    if url is None:
        return _error_response(f"Node type '{type_name}' has no URL for node '{node_id}'", status=404)
    return _ok_response({"url": url})


# block types


@router.get("/block-types")
async def list_block_types(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    registry = _engine(request).registry
    return _ok_response([block_type.to_dict() for _, block_type in registry.blocks.list_all()])


def _block_or_404(request: Request, type_name: str):
    block_type = _engine(request).registry.blocks.get(type_name)
    if block_type is None:
        raise NodeTypeNotFound(f"Block type '{type_name}' not found")
    return block_type


@router.get("/block-types/{type_name}")
async def get_block_type(request: Request, type_name: str):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    return _ok_response(_block_or_404(request, type_name).to_dict())


@router.get("/block-types/{type_name}/fields")
async def get_block_type_fields(request: Request, type_name: str):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    return _ok_response([f.to_dict() for f in _block_or_404(request, type_name).fields])


# middleware and error handlers


async def timing_middleware(request: Request, call_next):
    reset_db_stats()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    auth_ms = getattr(request.state, "auth_ms", 0.0)
    db_stats = get_db_stats()
    db_ms = db_stats.get("total_ms", 0.0)
    route = request.scope.get("route")
    route_name = getattr(route, "name", None) or "unknown"
    logger.info(
        "%s %s %s route=%s total_ms=%.1f auth_ms=%.1f db_ms=%.1f db_q=%s",
        request.method,
        request.url.path,
        response.status_code,
        route_name,
        total_ms,
        auth_ms,
        db_ms,
        db_stats.get("queries", 0),
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s route=%s total_ms=%.1f db_ms=%.1f status=%s",
            request.method,
            request.url.path,
            route_name,
            total_ms,
            db_ms,
            response.status_code,
        )
    if IS_DEV:
        response.headers["X-Req-MS"] = f"{total_ms:.1f}"
        response.headers["X-DB-MS"] = f"{db_ms:.1f}"
        response.headers["X-Route"] = route_name
    return response


async def engine_error_handler(request: Request, exc: NodeEngineError):
    return _error_response(exc.message, status=exc.status_code, errors=getattr(exc, "errors", None))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(str(exc.detail), status=exc.status_code)


async def integrity_error_handler(request: Request, exc: psycopg2.IntegrityError):
    diag = getattr(exc, "diag", None)
    column = getattr(diag, "column_name", None) if diag else None
    logger.warning("db_constraint_violation path=%s column=%s", request.url.path, column)
    message = f"Database constraint violation on {column}" if column else "Database constraint violation"
    return _error_response(message, status=400)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
    return _error_response("Internal server error", status=500)


def _default_stores():
    if USE_DB:
        from app.stores_db import DbNodeStore, DbUserStore

        return DbNodeStore(), DbUserStore()
    return MemoryNodeStore(), MemoryUserStore()


@asynccontextmanager
async def _db_lifespan(app: FastAPI):
    yield
    close_pool()
    logger.info("db_pool_closed")


def create_app(registry: Registry | None = None, node_store=None, user_store=None) -> FastAPI:
    """Build the API around an explicit registry and stores."""
    if JWT_SECRET == _DEV_JWT_SECRET and not IS_DEV:
        _auth_logger.warning("jwt_secret_default app_env=%s", APP_ENV)
    if registry is None:
        registry = build_registry()
    if node_store is None or user_store is None:
        default_nodes, default_users = _default_stores()
        node_store = node_store or default_nodes
        user_store = user_store or default_users

    app = FastAPI(title="nodecms", lifespan=_db_lifespan if USE_DB else None)
    app.state.registry = registry
    app.state.engine = NodeEngine(registry, node_store)
    app.state.resolver = PathResolver(app.state.engine)
    app.state.user_store = user_store
    app.state.jwt_secret = JWT_SECRET
    app.state.jwt_expires_hours = JWT_EXPIRES_HOURS

    app.include_router(router)
    app.add_exception_handler(NodeEngineError, engine_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(psycopg2.IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(AuthMiddleware, secret=JWT_SECRET)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted(_CORS_ORIGINS),
        allow_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(timing_middleware)
    return app


app = create_app()
