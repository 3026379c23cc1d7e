from fastapi import FastAPI, Request, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import json
from typing import Any
from apis.auth import router as auth_router
from apis.payments import router as payments_router
from apis.membership import router as membership_router
from apis.admin_membership import router as admin_membership_router
from apis.base import error_response
from core.config import cfg, VERSION, API_BASE
from core.db import DB
from core.exceptions import ServiceError
from core.log import get_logger, set_trace_id
from core.events import log_event, E
from jobs.membership import start_membership_sweep_worker

logger = get_logger(__name__)


class UnicodeJSONResponse(JSONResponse):
    """自定义 JSON 响应类，确保中文不被转义"""
    def render(self, content: Any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


app = FastAPI(
    title="AIFans API",
    description="AI灵感社会员与支付服务API文档",
    version=VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    openapi_tags=[
        {"name": "认证", "description": "用户认证相关接口"},
        {"name": "支付", "description": "会员订单与支付宝回调"},
        {"name": "会员", "description": "会员产品与兑换码"},
        {"name": "会员管理", "description": "管理员会员、订单与支付配置"},
    ],
    swagger_ui_parameters={
        "persistAuthorization": True,
        "withCredentials": True,
    },
    default_response_class=UnicodeJSONResponse,
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_custom_header(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Version"] = VERSION
    response.headers["Server"] = cfg.get("app_name", "AIFans")
    return response


@app.middleware("http")
async def bind_trace_id(request: Request, call_next):
    tid = set_trace_id(request.headers.get("X-Trace-Id"))
    response = await call_next(request)
    response.headers["X-Trace-Id"] = tid
    return response


@app.exception_handler(ServiceError)
async def handle_service_error(request: Request, exc: ServiceError):
    return UnicodeJSONResponse(
        status_code=exc.status_code,
        content=error_response(code=exc.code, message=exc.message),
    )


# 创建API路由分组
api_router = APIRouter(prefix=f"{API_BASE}")
api_router.include_router(auth_router)
api_router.include_router(payments_router)
api_router.include_router(membership_router)
api_router.include_router(admin_membership_router)
app.include_router(api_router)


@app.on_event("startup")
async def on_startup():
    DB.create_tables()
    log_event(logger, E.SYSTEM_STARTUP, version=VERSION, env=cfg.get("app.env", "development"))
    if cfg.get_bool("membership.sweep_enabled", True):
        start_membership_sweep_worker()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "web:app",
        host=str(cfg.get("server.host", "0.0.0.0")),
        port=int(cfg.get("server.port", 8001)),
    )
