from __future__ import annotations

from typing import Any

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, Response
from pydantic import BaseModel, Field

from decision_runtime import load_env
from decision_runtime.config import RuntimeConfig
from decision_runtime.decisions import ApprovalWorkflow, generate_evaluation_id
from decision_runtime.errors import DecisionRuntimeError, NotFoundError, ValidationError
from decision_runtime.logging import get_logger, setup_logging
from decision_runtime.triggers import EvaluationTriggerType

from .container import DecisionContainer, build_container
from .handlers import EventConsumer, request_evaluation
from .settings import get_settings


load_env()

app = FastAPI(title="Decision Admission and Policy Gate", version="0.1.0")

logger = get_logger("decision_api")


class EvaluateRequest(BaseModel):
    tenant_id: str
    account_id: str
    trigger_type: str = EvaluationTriggerType.EXPLICIT_USER_REQUEST.value
    correlation_id: str | None = None


class ApproveRequest(BaseModel):
    decision_id: str | None = None
    edits: dict[str, Any] = Field(default_factory=dict)
    approver: str = "unknown"


class RejectRequest(BaseModel):
    decision_id: str | None = None
    rejection_reason: str | None = None
    rejected_by: str = "unknown"


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"ok": "true"}


@app.get("/readyz")
async def readyz(response: Response) -> dict[str, Any]:
    container: DecisionContainer = app.state.container
    status = await container.health()
    if not status.get("ok"):
        response.status_code = 503
    return status


@app.on_event("startup")
async def _startup() -> None:
    settings = get_settings()
    config = RuntimeConfig.from_env()
    setup_logging(level="DEBUG" if settings.debug else config.logging.level, format=config.logging.format)

    container = await build_container(settings, config)
    app.state.container = container
    app.state.event_consumer = None
    if settings.consume_events:
        consumer = EventConsumer(container)
        consumer.start()
        app.state.event_consumer = consumer


@app.on_event("shutdown")
async def _shutdown() -> None:
    consumer: EventConsumer | None = getattr(app.state, "event_consumer", None)
    if consumer is not None:
        await consumer.stop()
    container: DecisionContainer | None = getattr(app.state, "container", None)
    if container is not None:
        await container.close()


def _require_tenant(container: DecisionContainer, tenant_id: str | None) -> str:
    if not tenant_id:
        raise HTTPException(status_code=400, detail="tenant_id is required")
    if not container.settings.tenant_allowed(tenant_id):
        raise HTTPException(status_code=403, detail="tenant not allowed")
    return tenant_id


def _tenant_from_header(container: DecisionContainer, request: Request) -> str:
    return _require_tenant(container, request.headers.get(container.settings.tenant_header))


async def _run_inline_evaluation(
    container: DecisionContainer,
    tenant_id: str,
    account_id: str,
    trigger_type: str,
    evaluation_id: str,
    correlation_id: str | None,
) -> None:
    try:
        await container.evaluator.evaluate(
            tenant_id,
            account_id,
            trigger_type=trigger_type,
            evaluation_id=evaluation_id,
            trace_id=correlation_id,
        )
    except Exception as e:
        # Already recorded as EVALUATION_FAILED; the status endpoint reports it.
        logger.warning("Inline evaluation failed", evaluation_id=evaluation_id, error=str(e))


@app.post("/decisions/evaluate", status_code=202)
async def evaluate_decision(
    req: EvaluateRequest,
    response: Response,
    background_tasks: BackgroundTasks,
) -> dict[str, Any]:
    container: DecisionContainer = app.state.container
    tenant_id = _require_tenant(container, req.tenant_id)
    if not req.account_id:
        raise HTTPException(status_code=400, detail="account_id is required")
    try:
        trigger_type = EvaluationTriggerType(req.trigger_type)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"unknown trigger_type: {req.trigger_type}")

    evaluation = await container.trigger_evaluator.should_trigger_decision(tenant_id, req.account_id, trigger_type)
    if not evaluation.should_evaluate:
        response.status_code = 200
        return {"status": "NOT_TRIGGERED", **evaluation.to_dict()}

    check = await container.budget.can_evaluate_decision(tenant_id, req.account_id)
    if not check.allowed:
        raise HTTPException(
            status_code=429,
            detail={
                "reason": check.reason.value,
                "budget_remaining": check.budget_remaining.to_dict(),
            },
        )

    evaluation_id = generate_evaluation_id()
    await request_evaluation(
        container,
        tenant_id,
        req.account_id,
        trigger_type.value,
        correlation_id=req.correlation_id,
        evaluation_id=evaluation_id,
    )
    if container.settings.inline_evaluation:
        background_tasks.add_task(
            _run_inline_evaluation,
            container,
            tenant_id,
            req.account_id,
            trigger_type.value,
            evaluation_id,
            req.correlation_id,
        )

    return {
        "evaluation_id": evaluation_id,
        "status": "PENDING",
        "status_url": (
            f"/decisions/{evaluation_id}/status?account_id={req.account_id}&tenant_id={tenant_id}"
        ),
    }


@app.get("/decisions/{evaluation_id}/status")
async def get_evaluation_status(
    evaluation_id: str,
    account_id: str | None = None,
    tenant_id: str | None = None,
) -> dict[str, Any]:
    container: DecisionContainer = app.state.container
    if not account_id or not tenant_id:
        raise HTTPException(status_code=400, detail="account_id and tenant_id are required")
    _require_tenant(container, tenant_id)

    status = await container.ledger.get_evaluation_status(tenant_id, account_id, evaluation_id)
    if status is None:
        raise HTTPException(status_code=404, detail="evaluation not found")
    return status.to_dict()


@app.get("/accounts/{account_id}/decisions")
async def get_account_decisions(
    account_id: str,
    tenant_id: str | None = None,
    limit: int = 50,
) -> dict[str, Any]:
    container: DecisionContainer = app.state.container
    tenant_id = _require_tenant(container, tenant_id)
    try:
        proposals = await container.proposals.list_for_account(tenant_id, account_id, limit=limit)
    except Exception as e:
        logger.log_error(e, "Failed to list account decisions", tenant_id=tenant_id, account_id=account_id)
        raise HTTPException(status_code=500, detail="failed to load decisions")
    return {
        "account_id": account_id,
        "decisions": [p.to_dict() for p in proposals],
    }


@app.post("/actions/{action_ref}/approve")
async def approve_action(action_ref: str, req: ApproveRequest, request: Request) -> dict[str, Any]:
    container: DecisionContainer = app.state.container
    tenant_id = _tenant_from_header(container, request)
    workflow: ApprovalWorkflow = container.approval
    try:
        intent = await workflow.approve(
            tenant_id,
            req.decision_id or "",
            action_ref,
            edits=req.edits,
            approver=req.approver,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    except DecisionRuntimeError as e:
        logger.log_error(e, "Approval failed", action_ref=action_ref)
        raise HTTPException(status_code=500, detail=e.to_dict())
    return {"action_intent": intent.to_dict()}


@app.post("/actions/{action_ref}/reject")
async def reject_action(action_ref: str, req: RejectRequest, request: Request) -> dict[str, Any]:
    container: DecisionContainer = app.state.container
    tenant_id = _tenant_from_header(container, request)
    workflow: ApprovalWorkflow = container.approval
    try:
        rejection = await workflow.reject(
            tenant_id,
            req.decision_id or "",
            action_ref,
            rejection_reason=req.rejection_reason,
            rejected_by=req.rejected_by,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    return {"rejection": rejection.to_dict()}
