import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import prompts
from .foodkeeper import FoodKeeper
from .llm import message_from_response
from .report import REPORT_RESPONSE_FORMAT, build_local_report, report_from_agent_output
from .risk import compute_safety, sustainability_score
from .schemas import RunRequest, SafetyReport, StepEvent
from .session_store import SessionStore
from .starter_pack import StarterPackError
from .tools import TOOL_DEFINITIONS, ToolRouter, build_tool_table


logger = logging.getLogger("uvicorn.error")

MAX_TOOL_TURNS = 7
AGENT_MAX_TOKENS = 2048


def new_session_id() -> str:
    return str(uuid.uuid4())


def _parse_tool_args(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


@dataclass
class RunHandle:
    session_id: str
    task: asyncio.Task

    async def wait(self) -> None:
        await asyncio.shield(self.task)


class RunOrchestrator:
    """Drives one run per session: proxy first if configured, then the local or agent pipeline."""

    def __init__(
        self,
        store: SessionStore,
        *,
        off_client: Any,
        fda_client: Any,
        news_client: Any,
        llm_client: Any,
        foodkeeper: FoodKeeper,
        starter_pack: Any = None,
        agent_mode: str = "local",
    ):
        self.store = store
        self.off = off_client
        self.fda = fda_client
        self.news = news_client
        self.llm = llm_client
        self.foodkeeper = foodkeeper
        self.starter_pack = starter_pack
        self.agent_mode = agent_mode
        self.router = ToolRouter(build_tool_table(off_client, fda_client, news_client, foodkeeper))
        self.tasks: Dict[str, asyncio.Task] = {}

    def start(self, request: RunRequest, session_id: Optional[str] = None) -> RunHandle:
        """Register a session and schedule the run; returns without waiting for it."""
        sid = session_id or new_session_id()
        self.store.create(sid)
        task = asyncio.create_task(self.run(sid, request))
        self.tasks[sid] = task
        task.add_done_callback(lambda _t: self.tasks.pop(sid, None))
        return RunHandle(session_id=sid, task=task)

    async def emit(
        self,
        session_id: str,
        step_id: str,
        label: str,
        status: str = "running",
        details: Optional[str] = None,
    ) -> None:
        event = StepEvent(id=step_id, label=label, status=status, details=details)
        await self.store.append_event(session_id, event.model_dump(exclude_none=True))

    async def run(self, session_id: str, request: RunRequest) -> None:
        logger.info("Run %s started (%s input)", session_id, request.input_type)
        try:
            if self.starter_pack is not None and self.starter_pack.enabled:
                if await self._run_proxy(session_id, request):
                    return
            if self.agent_mode == "agent" and self.llm.enabled:
                report = await self._run_agent(session_id, request)
            else:
                if self.agent_mode == "agent":
                    logger.info("Run %s: agent mode requested without an LLM; using local pipeline", session_id)
                report = await self._run_local(session_id, request)
            await self.store.set_final(session_id, report.model_dump())
        except Exception as exc:
            logger.exception("Run %s failed", session_id)
            await self.emit(session_id, "run", "Run failed", "error", str(exc))
            await self.store.set_error(session_id, str(exc))

    async def _run_proxy(self, session_id: str, request: RunRequest) -> bool:
        await self.emit(session_id, "proxy", "Proxying to Agent Starter Pack", "running")
        try:
            data = await self.starter_pack.run(request.forward_payload())
        except StarterPackError as exc:
            logger.warning("Run %s: Starter Pack failed (%s); falling back to local runner", session_id, exc)
            await self.emit(
                session_id,
                "proxy",
                "Starter Pack proxy failed, falling back to local runner",
                "error",
                str(exc),
            )
            return False
        await self.emit(session_id, "proxy", "Starter Pack response received", "completed")
        await self.store.set_final(session_id, data)
        return True

    async def _run_local(self, session_id: str, request: RunRequest) -> SafetyReport:
        prefs = request.prefs
        trace: List[Dict[str, Any]] = []
        await self.emit(session_id, "intent", "Understanding request", "running")
        await self.emit(session_id, "intent", "Request understood", "completed", f"{request.input_type} input")

        product_name = request.primary_text() or "Food item"
        product: Optional[Dict[str, Any]] = None
        barcode_url: Optional[str] = None
        guidance = None

        if request.input_type == "barcode" and request.barcode:
            await self.emit(session_id, "barcode", "Looking up barcode", "running")
            product = await self.off.lookup(request.barcode)
            trace.append({"tool": "lookup_product_by_barcode", "args": {"barcode": request.barcode}, "result": product})
            if product.get("found"):
                product_name = product.get("product_name") or product_name
                barcode_url = self.off.product_url(request.barcode)
                guidance = self.foodkeeper.lookup(product.get("categories") or product_name)
                await self.emit(session_id, "barcode", "Barcode lookup complete", "completed", product_name)
            elif product.get("error"):
                await self.emit(session_id, "barcode", "Barcode lookup unavailable", "error", str(product["error"]))
            else:
                await self.emit(session_id, "barcode", "Barcode not found", "completed")

        await self.emit(session_id, "recall", "Checking recalls", "running")
        recall = await self.fda.search_recalls(product_name or "food")
        trace.append({"tool": "check_food_recalls", "args": {"product_name": product_name}, "result": recall})
        if recall.get("error"):
            await self.emit(session_id, "recall", "Recall lookup unavailable", "error", str(recall["error"]))
        elif recall.get("has_recall"):
            await self.emit(session_id, "recall", "Recall detected", "completed", recall.get("details"))
        else:
            await self.emit(session_id, "recall", "No recalls found", "completed")

        await self.emit(session_id, "spoilage", "Checking storage guidance", "running")
        if guidance is None:
            guidance = self.foodkeeper.lookup(product_name)
        if guidance is not None:
            await self.emit(session_id, "spoilage", "Storage guidance found", "completed", guidance.name)
        else:
            await self.emit(session_id, "spoilage", "No storage guidance", "completed")

        await self.emit(session_id, "sustainability", "Scoring sustainability", "running")
        categories = (product or {}).get("categories") if product and product.get("found") else ""
        sustainability = sustainability_score(
            " ".join(part for part in (categories, guidance.category if guidance else "", product_name) if part)
        )
        await self.emit(session_id, "sustainability", "Sustainability scored", "completed", sustainability["flag"])

        allergens = list((product or {}).get("allergens_tags") or []) if product and product.get("found") else []
        score, flag = compute_safety(bool(recall.get("has_recall")), allergens, guidance)

        await self.emit(session_id, "reasoning", "Summarizing findings", "running")
        facts = (
            f"Product: {product_name}. "
            f"Recall: {recall.get('details') if recall.get('has_recall') else 'none'}. "
            f"Allergens: {', '.join(allergens) or 'none'}. "
            f"Storage: {guidance.notes if guidance else 'n/a'}."
        )
        summary = await self.llm.summarize(facts, prefs.user_language or "English")
        await self.emit(session_id, "reasoning", "Summary ready", "completed")

        return build_local_report(
            session_id=session_id,
            product_name=product_name,
            product=product,
            barcode_url=barcode_url,
            recall=recall,
            guidance=guidance,
            sustainability=sustainability,
            safety_score=score,
            safety_flag=flag,
            summary=summary,
            trace=trace,
        )

    def _agent_user_content(self, request: RunRequest) -> Any:
        if request.input_type == "image":
            parts: List[Dict[str, Any]] = [
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{request.mime_type};base64,{request.image_base64}"},
                },
                {"type": "text", "text": prompts.IMAGE_INSTRUCTION},
            ]
            if request.raw_text:
                parts.append({"type": "text", "text": request.raw_text})
            return parts
        if request.input_type == "barcode":
            return prompts.BARCODE_INSTRUCTION.format(barcode=request.barcode)
        if request.input_type == "recipe":
            return prompts.RECIPE_INSTRUCTION.format(recipe=request.primary_text())
        return request.primary_text()

    async def _run_agent(self, session_id: str, request: RunRequest) -> SafetyReport:
        prefs = request.prefs
        trace: List[Dict[str, Any]] = []
        tool_sources: List[Dict[str, Any]] = []

        await self.emit(session_id, "init", "Initializing agent", "running")
        messages: List[Dict[str, Any]] = [
            {
                "role": "system",
                "content": prompts.agent_system_prompt(prefs.diet_restriction, prefs.location, prefs.user_language),
            },
            {"role": "user", "content": self._agent_user_content(request)},
        ]
        await self.emit(session_id, "init", "Agent ready", "completed")

        await self.emit(session_id, "reasoning", "Agent is thinking...", "running")
        response = await self.llm.chat_completion(messages, tools=TOOL_DEFINITIONS, max_tokens=AGENT_MAX_TOKENS)
        message = message_from_response(response)
        turns = 0
        while message.get("tool_calls") and turns < MAX_TOOL_TURNS:
            turns += 1
            tool_calls = message["tool_calls"]
            messages.append({"role": "assistant", "content": message.get("content") or "", "tool_calls": tool_calls})
            for index, call in enumerate(tool_calls):
                call_id = call.get("id") or f"{turns}_{index}"
                function = call.get("function") or {}
                name = function.get("name") or ""
                args = _parse_tool_args(function.get("arguments"))
                label = f"Executing tool: {name}"
                if name == "check_food_safety_news":
                    label = f"Scanning news for {args.get('query') or 'outbreaks'}..."
                await self.emit(session_id, f"tool_{call_id}", label, "running")
                result = await self.router.execute(name, args)
                trace.append({"turn": turns, "tool": name, "args": args, "ok": "error" not in result})
                tool_sources.extend(s for s in result.get("sources") or [] if isinstance(s, dict))
                await self.emit(
                    session_id,
                    f"tool_{call_id}",
                    f"Tool finished: {name}",
                    "completed",
                    str(result["error"]) if "error" in result else None,
                )
                messages.append({"role": "tool", "tool_call_id": call_id, "content": json.dumps({"result": result})})
            await self.emit(session_id, "reasoning", "Processing gathered info...", "running")
            response = await self.llm.chat_completion(messages, tools=TOOL_DEFINITIONS, max_tokens=AGENT_MAX_TOKENS)
            message = message_from_response(response)
        if message.get("tool_calls"):
            logger.info("Run %s: tool budget of %d turns exhausted; writing report", session_id, MAX_TOOL_TURNS)
        elif message.get("content"):
            messages.append({"role": "assistant", "content": message["content"]})
        await self.emit(session_id, "reasoning", "Information gathering complete", "completed", f"{turns} tool turn(s)")

        await self.emit(session_id, "finalizing", "Generating safety report...", "running")
        messages.append({"role": "user", "content": prompts.FINAL_REPORT_INSTRUCTION})
        final = await self.llm.chat_completion(
            messages,
            max_tokens=AGENT_MAX_TOKENS,
            response_format=REPORT_RESPONSE_FORMAT,
        )
        report = report_from_agent_output(
            message_from_response(final).get("content"),
            session_id,
            tool_sources,
            trace,
        )
        await self.emit(session_id, "finalizing", "Report ready", "completed")
        return report
