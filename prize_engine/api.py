import json
import logging
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from prize_engine import config
from prize_engine.errors import PrizeEngineError, ValidationError
from prize_engine.models import context_from_dict, participant_from_dict, to_bool, to_int
from prize_engine.service import PrizeRuleService
from prize_engine.store import RuleStore

log = logging.getLogger("prize-engine.api")


async def _body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Request body must be JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _actor(request: Request) -> str:
    """Admin gate for mutating endpoints; returns the acting user."""
    key = config.ADMIN_API_KEY
    if key and request.headers.get("x-admin-key", "") != key:
        raise HTTPException(status_code=403, detail="forbidden")
    return (request.headers.get("x-actor") or "admin").strip()[:64]


def _participants(data: dict) -> list:
    raw = data.get("participants") or []
    if not isinstance(raw, list):
        raise ValidationError("participants must be a list")
    return [participant_from_dict(p) for p in raw]


def create_app(service: PrizeRuleService | None = None) -> FastAPI:
    app = FastAPI(title="prize-engine")
    app.state.service = service or PrizeRuleService(RuleStore())

    def svc() -> PrizeRuleService:
        return app.state.service

    @app.exception_handler(PrizeEngineError)
    async def on_engine_error(request: Request, exc: PrizeEngineError):
        rid = uuid.uuid4().hex[:10]
        level = logging.ERROR if exc.status_code == 404 and exc.code == "no_applicable_rule" else logging.INFO
        log.log(level, "request rejected rid=%s path=%s code=%s message=%s",
                rid, request.url.path, exc.code, exc.message)
        return JSONResponse({"success": False, "error": exc.to_dict()}, status_code=exc.status_code)

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    # ---------- rules ----------

    @app.get("/rules")
    async def list_rules(
        page: int = 1,
        limit: int = config.RULES_PAGE_LIMIT,
        search: str = "",
        match_type: str = "",
        game_type: str = "",
        is_active: str = "",
        sort_by: str = "priority",
        sort_order: str = "desc",
    ):
        rules, total = svc().list_rules(
            match_type=match_type or None,
            game_type=game_type or None,
            is_active=to_bool(is_active) if is_active != "" else None,
            search=search or None,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
        limit = max(1, min(limit, config.RULES_PAGE_LIMIT_MAX))
        return {
            "success": True,
            "rules": [r.to_dict() for r in rules],
            "pagination": {
                "page": max(1, page),
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    @app.post("/rules", status_code=201)
    async def create_rule(request: Request):
        actor = _actor(request)
        rule = svc().create_rule(await _body(request), created_by=actor)
        return {"success": True, "message": "Prize distribution rule created successfully", "rule": rule.to_dict()}

    @app.get("/rules/stats")
    async def rule_stats():
        return {"success": True, "stats": svc().stats()}

    @app.post("/rules/bulk")
    async def bulk_update(request: Request):
        actor = _actor(request)
        data = await _body(request)
        rule_ids = data.get("rule_ids")
        if not isinstance(rule_ids, list):
            raise ValidationError("Rule IDs array is required")
        updates = data.get("updates")
        if not isinstance(updates, dict):
            raise ValidationError("No valid update fields provided")
        modified = svc().bulk_update(rule_ids, updates, changed_by=actor)
        return {"success": True, "message": f"{modified} rule(s) updated successfully", "modified_count": modified}

    @app.get("/rules/{rule_id}")
    async def get_rule(rule_id: str):
        return {"success": True, "rule": svc().get_rule(rule_id).to_dict()}

    @app.patch("/rules/{rule_id}")
    async def update_rule(rule_id: str, request: Request):
        actor = _actor(request)
        rule = svc().update_rule(rule_id, await _body(request), changed_by=actor)
        return {"success": True, "message": "Prize distribution rule updated successfully", "rule": rule.to_dict()}

    @app.post("/rules/{rule_id}/toggle")
    async def toggle_rule(rule_id: str, request: Request):
        rule = svc().toggle_status(rule_id, changed_by=_actor(request))
        state = "activated" if rule.is_active else "deactivated"
        return {"success": True, "message": f"Rule {state} successfully", "rule": rule.to_dict()}

    @app.post("/rules/{rule_id}/deactivate")
    async def deactivate_rule(rule_id: str, request: Request):
        actor = _actor(request)
        data = await _body(request)
        rule = svc().deactivate_rule(rule_id, changed_by=actor, reason=str(data.get("change_reason") or ""))
        return {"success": True, "message": "Rule deactivated successfully", "rule": rule.to_dict()}

    @app.post("/rules/{rule_id}/default")
    async def set_default(rule_id: str, request: Request):
        rule = svc().set_default(rule_id, changed_by=_actor(request))
        return {"success": True, "message": "Default rule set successfully", "rule": rule.to_dict()}

    @app.post("/rules/{rule_id}/duplicate", status_code=201)
    async def duplicate_rule(rule_id: str, request: Request):
        rule = svc().duplicate_rule(rule_id, created_by=_actor(request))
        return {"success": True, "message": "Rule duplicated successfully", "rule": rule.to_dict()}

    @app.get("/rules/{rule_id}/history")
    async def rule_history(rule_id: str):
        history, current = svc().get_history(rule_id)
        return {"success": True, "history": [h.to_dict() for h in history], "current_version": current}

    @app.post("/rules/{rule_id}/restore/{version}")
    async def restore_version(rule_id: str, version: str, request: Request):
        actor = _actor(request)
        v = to_int(version, "version")
        rule = svc().restore_version(rule_id, v, changed_by=actor)
        return {"success": True, "message": f"Rule restored to version {v}", "rule": rule.to_dict()}

    @app.post("/rules/{rule_id}/preview")
    async def preview(rule_id: str, request: Request):
        data = await _body(request)
        match = context_from_dict(data.get("match") or {})
        result = svc().preview_distribution(rule_id, match, _participants(data))
        return {"success": True, "rule_id": rule_id, "distribution": result.to_dict()}

    # ---------- engine ----------

    @app.post("/select")
    async def select_rule(request: Request):
        ctx = context_from_dict(await _body(request))
        rule = svc().select_rule(ctx)
        return {"success": True, "applicable_rule": rule.to_dict()}

    @app.post("/distribute")
    async def distribute(request: Request):
        data = await _body(request)
        ctx = context_from_dict(data.get("match") or {})
        rule, result = svc().distribute(ctx, _participants(data))
        return {
            "success": True,
            "match_id": ctx.match_id,
            "rule": {"id": rule.id, "name": rule.name, "version": rule.version,
                     "distribution_type": rule.distribution_type},
            "distribution": result.to_dict(),
        }

    return app
