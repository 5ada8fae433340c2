"""
Operator web surface (JSON only).

    GET  /              health + agent address
    GET  /api/status    balance, job counts, totals
    GET  /api/jobs      processed jobs, most recent first
    GET  /api/history   the caller's last exchanges
    POST /api/chat      {"prompt": "..."} → bridge (or direct CHAT) exchange

Run: bsvclaw web [--port 3009] [--with-agent]
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from bsvclaw import __version__
from bsvclaw.errors import ClawError, ConversationBusyError, ResponseTimeoutError
from bsvclaw.logging_config import get_logger
from bsvclaw.service import ClawService

logger = get_logger(__name__)


class ChatRequest(BaseModel):
    prompt: str = Field("", description="Question for the agent")


def client_ip(request: Request) -> str:
    """Requester identity: first X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def create_app(service: ClawService, start_agent: bool = False) -> FastAPI:
    app = FastAPI(title="bsvclaw", version=__version__)

    @app.on_event("startup")
    def _startup():
        logger.info(f"Web surface for {service.wallet.address} (chat mode: {service.config.chat_mode})")
        if service.bridge is None and service.config.chat_mode != "direct":
            logger.warning("No sender wallet: /api/chat will fail until one is configured")
        if start_agent:
            service.start()

    @app.on_event("shutdown")
    def _shutdown():
        if start_agent:
            service.stop(timeout=5)

    @app.get("/")
    def health():
        return {"status": "ok", "address": service.wallet.address, "version": __version__}

    @app.get("/api/status")
    def status():
        return service.status()

    @app.get("/api/jobs")
    def jobs(limit: int = 50):
        return {"jobs": service.jobs(limit)}

    @app.get("/api/history")
    def history(request: Request):
        entries = service.history(client_ip(request))
        return {"history": [e.model_dump(by_alias=True) for e in entries]}

    @app.post("/api/chat")
    def chat(body: ChatRequest, request: Request):
        prompt = (body.prompt or "").strip()
        if not prompt:
            return _error(400, "Empty prompt")
        requester = client_ip(request)
        try:
            response = service.chat(requester, prompt)
        except ConversationBusyError:
            return _error(409, "Previous request still pending")
        except ResponseTimeoutError as e:
            return _error(504, "Timed out waiting for the agent's response", jobTxid=e.job_txid)
        except ClawError as e:
            logger.error(f"Chat failed: {e}")
            return _error(500, e.message)
        except Exception as e:
            logger.exception("Chat failed")
            return _error(500, str(e))
        return {
            "result": response.result,
            "jobTxid": response.job_txid,
            "resTxid": response.response_txid,
            "source": response.source,
        }

    return app


def serve(service: ClawService, port: Optional[int] = None, start_agent: bool = False) -> None:
    import uvicorn

    port = port or service.config.web_port
    app = create_app(service, start_agent=start_agent)
    logger.info(f"Listening on http://0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
