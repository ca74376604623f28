"""对外 HTTP 服务模块。

基于 FastAPI 暴露求职助手的各个 AI 接口：
- 流式接口把 StreamRelay 产出的 SSE 帧原样转发（text/event-stream）。
- job-intel 使用非流式调用，返回完整报告。
- /api/user/apikey 管理用户自带的厂商密钥（BYOK），/api/user/profile 返回套餐与用量。
- /api/records 保存求职记录，流式结束后调用方把完整回答 PATCH 进记录。

每个 AI 接口在请求参数校验通过后做套餐/用量校验（check_access），再调用 Relay。
校验与用量写回在账户锁内完成，并放到线程池执行，避免阻塞事件循环；
只读写文件的接口直接定义为同步函数，由 FastAPI 放入线程池。
用户身份由 current_user_id 依赖解析，真实的登录会话层可以通过
app.dependency_overrides 替换它。
"""

from contextlib import aclosing, asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from career_relay import prompts
from career_relay.access import AccessDecision, check_access, is_new_month
from career_relay.config.settings import settings as default_settings
from career_relay.domain.accounts import AccountStore
from career_relay.domain.exceptions import BusinessError
from career_relay.domain.models import PROVIDER_NAMES, ConversationTurn
from career_relay.domain.records import JobRecord, RecordStore
from career_relay.infrastructure.logging.logger import logger
from career_relay.infrastructure.storage.json_store import JsonAccountStore, JsonRecordStore
from career_relay.relay import RelayStream, StreamRelay


SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


# ---- 请求体 ----


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ResumeBody(_Body):
    jd: Optional[str] = None
    resume: Optional[str] = None
    company: Optional[str] = None
    language: Optional[str] = None


class TurnBody(_Body):
    role: Literal["user", "assistant"]
    content: str


class ConversationBody(ResumeBody):
    messages: List[TurnBody] = Field(default_factory=list)
    user_message: Optional[str] = Field(default=None, alias="userMessage")

    def turns(self) -> List[ConversationTurn]:
        return [ConversationTurn(role=m.role, content=m.content) for m in self.messages]


class JobIntelBody(_Body):
    company: Optional[str] = None
    jd: Optional[str] = None
    language: Optional[str] = None
    sources: List[str] = Field(default_factory=list)


class ApiKeyBody(_Body):
    provider: Optional[str] = None
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    model: Optional[str] = None


class RecordBody(_Body):
    company: Optional[str] = None
    jd_content: Optional[str] = Field(default=None, alias="jdContent")
    resume: Optional[str] = None


class RecordResultBody(_Body):
    action_type: Optional[str] = Field(default=None, alias="actionType")
    content: Optional[str] = None


# ---- 依赖 ----


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_user_id or None


def get_relay(request: Request) -> StreamRelay:
    return request.app.state.relay


def get_store(request: Request) -> AccountStore:
    return request.app.state.store


def get_records(request: Request) -> RecordStore:
    return request.app.state.records


def _error(message: str, status: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


def _authorize(action: str, store: AccountStore, user_id: Optional[str]) -> AccessDecision:
    if not user_id:
        decision = check_access(action, None, datetime.now(timezone.utc))
    else:
        # 读取、判定、写回用量在同一把账户锁内完成
        with store.locked(user_id):
            decision = check_access(action, store.get(user_id), datetime.now(timezone.utc))
            if decision.allowed and decision.usage_update is not None:
                store.record_usage(
                    decision.account_id,
                    decision.usage_update.usage_count,
                    decision.usage_update.usage_reset_at,
                )
    if not decision.allowed:
        logger.info("access.denied", extra={"extra": {"action": action, "reason": decision.reason}})
    return decision


def _record_summary(record: JobRecord) -> dict:
    return {
        "id": record.id,
        "company": record.company,
        "jdTitle": record.jd_title,
        "results": record.results,
        "createdAt": record.created_at.isoformat(),
        "updatedAt": record.updated_at.isoformat(),
    }


async def _forward(stream: RelayStream) -> AsyncIterator[str]:
    # 客户端断开时关闭 Relay 迭代器，释放厂商连接
    async with aclosing(stream) as frames:
        async for frame in frames:
            yield frame


def sse_response(stream: RelayStream) -> StreamingResponse:
    return StreamingResponse(_forward(stream), media_type="text/event-stream", headers=SSE_HEADERS)


# ---- 应用 ----


def create_app(
    relay: Optional[StreamRelay] = None,
    store: Optional[AccountStore] = None,
    settings=None,
    records: Optional[RecordStore] = None,
) -> FastAPI:
    cfg = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # 默认凭据缺失属于启动期错误
        cfg.require_default_credential()
        yield

    app = FastAPI(title="career-relay", lifespan=lifespan)
    app.state.settings = cfg
    app.state.relay = relay or StreamRelay(cfg)
    app.state.store = store or JsonAccountStore(root=cfg.storage_root)
    app.state.records = records or JsonRecordStore(root=cfg.storage_root)

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
        logger.error(f"Request failed: {exc.message}", extra={"extra": {"path": request.url.path, "code": exc.code}})
        return JSONResponse({"error": exc.message, "code": exc.code}, status_code=exc.http_status)

    @app.post("/api/optimize-resume")
    async def optimize_resume(
        body: ResumeBody,
        user_id: Optional[str] = Depends(current_user_id),
        relay: StreamRelay = Depends(get_relay),
        store: AccountStore = Depends(get_store),
    ):
        if not body.jd or not body.resume:
            return _error("JD and resume are required", 400)
        decision = await run_in_threadpool(_authorize, "optimize-resume", store, user_id)
        if not decision.allowed:
            return _error(decision.reason, decision.http_status)
        system_prompt, user_message = prompts.optimize_resume_prompts(body.jd, body.resume, body.company, body.language)
        return sse_response(relay.stream(system_prompt, [], user_message, decision.credential))

    @app.post("/api/interview-questions")
    async def interview_questions(
        body: ResumeBody,
        user_id: Optional[str] = Depends(current_user_id),
        relay: StreamRelay = Depends(get_relay),
        store: AccountStore = Depends(get_store),
    ):
        if not body.jd:
            return _error("JD is required", 400)
        decision = await run_in_threadpool(_authorize, "interview-questions", store, user_id)
        if not decision.allowed:
            return _error(decision.reason, decision.http_status)
        system_prompt, user_message = prompts.interview_questions_prompts(body.jd, body.resume, body.company)
        return sse_response(relay.stream(system_prompt, [], user_message, decision.credential))

    @app.post("/api/mock-interview")
    async def mock_interview(
        body: ConversationBody,
        user_id: Optional[str] = Depends(current_user_id),
        relay: StreamRelay = Depends(get_relay),
        store: AccountStore = Depends(get_store),
    ):
        if not body.user_message:
            return _error("userMessage is required", 400)
        decision = await run_in_threadpool(_authorize, "mock-interview", store, user_id)
        if not decision.allowed:
            return _error(decision.reason, decision.http_status)
        system_prompt = prompts.mock_interview_system_prompt(body.jd, body.resume, body.company, body.language)
        return sse_response(relay.stream(system_prompt, body.turns(), body.user_message, decision.credential))

    @app.post("/api/chat")
    async def chat(
        body: ConversationBody,
        user_id: Optional[str] = Depends(current_user_id),
        relay: StreamRelay = Depends(get_relay),
        store: AccountStore = Depends(get_store),
    ):
        if not body.user_message:
            return _error("userMessage is required", 400)
        decision = await run_in_threadpool(_authorize, "chat", store, user_id)
        if not decision.allowed:
            return _error(decision.reason, decision.http_status)
        system_prompt = prompts.chat_system_prompt(body.jd, body.resume, body.company, body.language)
        return sse_response(relay.stream(system_prompt, body.turns(), body.user_message, decision.credential))

    @app.post("/api/job-intel")
    async def job_intel(
        body: JobIntelBody,
        user_id: Optional[str] = Depends(current_user_id),
        relay: StreamRelay = Depends(get_relay),
        store: AccountStore = Depends(get_store),
    ):
        if not body.company:
            return _error("Company name is required", 400)
        decision = await run_in_threadpool(_authorize, "job-intel", store, user_id)
        if not decision.allowed:
            return _error(decision.reason, decision.http_status)
        sources = [s for s in body.sources if s and s.strip()]
        system_prompt, user_message = prompts.job_intel_prompts(
            body.company,
            body.jd,
            "\n---\n".join(sources),
            body.language,
        )
        report = await relay.complete(system_prompt, [], user_message, decision.credential)
        return {"report": report, "sourcesCount": len(sources)}

    @app.get("/api/user/apikey")
    def get_api_key(
        user_id: Optional[str] = Depends(current_user_id),
        store: AccountStore = Depends(get_store),
    ):
        account = store.get(user_id) if user_id else None
        if account is None:
            return _error("Unauthorized", 401)
        key = account.custom_api_key
        return {
            "provider": account.custom_provider,
            "model": account.custom_model,
            "hasKey": bool(key),
            # 只返回前缀提示，永不回传完整密钥
            "keyHint": f"{key[:8]}…" if key else None,
        }

    @app.put("/api/user/apikey")
    def put_api_key(
        body: ApiKeyBody,
        user_id: Optional[str] = Depends(current_user_id),
        store: AccountStore = Depends(get_store),
    ):
        if not user_id or store.get(user_id) is None:
            return _error("Unauthorized", 401)
        if not body.provider or not body.api_key:
            return _error("provider and apiKey are required", 400)
        if body.provider not in PROVIDER_NAMES:
            return _error("Invalid provider", 400)
        store.set_api_key(user_id, body.provider, body.api_key, body.model)
        logger.info("apikey.updated", extra={"extra": {"account_id": user_id, "provider": body.provider}})
        return {"success": True}

    @app.delete("/api/user/apikey")
    def delete_api_key(
        user_id: Optional[str] = Depends(current_user_id),
        store: AccountStore = Depends(get_store),
    ):
        if not user_id or store.get(user_id) is None:
            return _error("Unauthorized", 401)
        store.clear_api_key(user_id)
        logger.info("apikey.cleared", extra={"extra": {"account_id": user_id}})
        return {"success": True}

    @app.get("/api/user/profile")
    def get_profile(
        user_id: Optional[str] = Depends(current_user_id),
        store: AccountStore = Depends(get_store),
    ):
        account = store.get(user_id) if user_id else None
        if account is None:
            return _error("Unauthorized", 401)
        # 跨月后显示 0，真正的重置发生在下一次 optimize-resume
        fresh_month = is_new_month(datetime.now(timezone.utc), account.usage_reset_at)
        return {
            "plan": account.plan,
            "usageCount": 0 if fresh_month else account.usage_count,
            "hasCustomKey": bool(account.custom_provider),
            "customProvider": account.custom_provider,
            "customModel": account.custom_model,
        }

    @app.get("/api/records")
    def list_records(
        user_id: Optional[str] = Depends(current_user_id),
        records: RecordStore = Depends(get_records),
    ):
        if not user_id:
            return _error("Unauthorized", 401)
        return [_record_summary(r) for r in records.list_recent(user_id)]

    @app.post("/api/records")
    def create_record(
        body: RecordBody,
        user_id: Optional[str] = Depends(current_user_id),
        records: RecordStore = Depends(get_records),
    ):
        if not user_id:
            return _error("Unauthorized", 401)
        record = records.create(user_id, body.company or "", body.jd_content or "", body.resume or "")
        return {"id": record.id}

    @app.get("/api/records/{record_id}")
    def get_record(
        record_id: str,
        user_id: Optional[str] = Depends(current_user_id),
        records: RecordStore = Depends(get_records),
    ):
        if not user_id:
            return _error("Unauthorized", 401)
        record = records.get(record_id, user_id)
        if record is None:
            return _error("Not found", 404)
        return {**_record_summary(record), "jdContent": record.jd_content, "resume": record.resume}

    @app.patch("/api/records/{record_id}")
    def update_record(
        record_id: str,
        body: RecordResultBody,
        user_id: Optional[str] = Depends(current_user_id),
        records: RecordStore = Depends(get_records),
    ):
        if not user_id:
            return _error("Unauthorized", 401)
        if body.action_type and body.content:
            record = records.merge_result(record_id, user_id, body.action_type, body.content)
        else:
            record = records.get(record_id, user_id)
        if record is None:
            return _error("Not found", 404)
        return {"id": record.id}

    @app.delete("/api/records/{record_id}")
    def delete_record(
        record_id: str,
        user_id: Optional[str] = Depends(current_user_id),
        records: RecordStore = Depends(get_records),
    ):
        if not user_id:
            return _error("Unauthorized", 401)
        records.delete(record_id, user_id)
        return {"ok": True}

    return app
