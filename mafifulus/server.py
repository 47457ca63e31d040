"""Mafifulus backend: login, statement upload/parsing, saving and export over FastAPI."""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from mafifulus import storage
from mafifulus.advisor import AdvisorUnavailable, LiveAdvisorSession, build_system_instruction
from mafifulus.audio import decode, float32_from_bytes
from mafifulus.auth import create_token, current_user, optional_user
from mafifulus.dashboard import summarize
from mafifulus.export import (
    CSV_FILENAME,
    CSV_MEDIA_TYPE,
    EXCEL_FILENAME,
    EXCEL_MEDIA_TYPE,
    export_csv,
    export_excel,
)
from mafifulus.extraction import ExtractionError, ExtractionTimeout, is_pdf, parse_bank_statement
from mafifulus.insights import LifeObjective, advice_cards, compute_ratios, generate_insights, objective_progress
from mafifulus.repository import InviteCodeError, get_store

load_dotenv()

logger = logging.getLogger(__name__)

PORT = int(os.getenv("PORT", "5000"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(title="Mafifulus API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


class UploadTooLarge(Exception):
    pass


class StatementNotFound(Exception):
    pass


@app.exception_handler(HTTPException)
async def http_error(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())})


# --- Request models ---

class LoginRequest(BaseModel):
    phoneNumber: Optional[str] = None
    name: Optional[str] = None
    inviteCode: Optional[str] = None


class LoginUser(BaseModel):
    id: str
    name: Optional[str]


class LoginResponse(BaseModel):
    success: bool
    token: str
    user: LoginUser


class TransactionsPayload(BaseModel):
    # Left loose so a missing or non-list value gets the API's own 400 message
    transactions: Any = None


class ConfirmRequest(TransactionsPayload):
    userId: Optional[str] = None


class AdvisorRequest(TransactionsPayload):
    userName: str = "there"
    objectives: List[LifeObjective] = Field(default_factory=list)
    activeSection: str = ""


def _require_list(transactions: Any) -> List[Dict[str, Any]]:
    if not isinstance(transactions, list) or not all(isinstance(t, dict) for t in transactions):
        raise HTTPException(status_code=400, detail="Invalid transactions data")
    return transactions


# --- Routes ---

@app.post("/api/auth/login", response_model=LoginResponse)
async def login(req: LoginRequest):
    if not req.phoneNumber:
        raise HTTPException(status_code=400, detail="Phone number required")

    try:
        user = get_store().login(req.phoneNumber, req.name, req.inviteCode)
    except InviteCodeError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except Exception:
        logger.exception("Login Error")
        raise HTTPException(status_code=500, detail="Internal Server Error")

    return LoginResponse(
        success=True,
        token=create_token(user),
        user=LoginUser(id=user["id"], name=user["full_name"]),
    )


@app.post("/api/export/excel")
async def export_excel_route(req: TransactionsPayload):
    transactions = _require_list(req.transactions)
    try:
        body = export_excel(transactions)
    except Exception:
        logger.exception("Excel Generation Error")
        raise HTTPException(status_code=500, detail="Failed to generate Excel file")

    return Response(
        content=body,
        media_type=EXCEL_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{EXCEL_FILENAME}"'},
    )


@app.post("/api/export/csv")
async def export_csv_route(req: TransactionsPayload):
    transactions = _require_list(req.transactions)
    return Response(
        content=export_csv(transactions),
        media_type=CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{CSV_FILENAME}"'},
    )


@app.post("/api/transactions/confirm")
async def confirm_transactions(req: ConfirmRequest, token: Optional[dict] = Depends(optional_user)):
    transactions = _require_list(req.transactions)
    user_id = token["userId"] if token else req.userId
    store = get_store()

    try:
        count = store.save_transactions(user_id, transactions)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid transactions data")
    except Exception:
        logger.exception("Save Transactions Error")
        raise HTTPException(status_code=500, detail="Failed to save transactions")

    result = {"success": True, "count": count}
    if not store.persistent:
        result["mock"] = True
    return result


@app.get("/api/transactions")
async def list_transactions(token: dict = Depends(current_user)):
    return {"transactions": get_store().list_transactions(token["userId"])}


async def _read_limited(file: UploadFile) -> bytes:
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise UploadTooLarge(file.filename)
    return data


@app.post("/api/statements/upload")
async def upload_statement(file: Optional[UploadFile] = File(None)):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    try:
        data = await _read_limited(file)
    except UploadTooLarge:
        raise HTTPException(status_code=413, detail="File too large. The limit is 10MB.")

    if not is_pdf(file.content_type, data):
        raise HTTPException(status_code=400, detail="Please upload a PDF file.")

    logger.info("[Upload] Received file: %s (%d bytes)", file.filename, len(data))
    file_id = storage.new_file_id()
    if not storage.save_file(f"{file_id}.pdf", data):
        raise HTTPException(status_code=500, detail="Failed to store file")

    return {"success": True, "message": "File uploaded successfully", "fileId": file_id}


def _parse_stored(file_id: str) -> List[dict]:
    data = storage.load_file(f"{file_id}.pdf")
    if data is None:
        raise StatementNotFound(file_id)
    return parse_bank_statement(data)


@app.post("/api/statements/{file_id}/parse")
async def parse_statement(file_id: str):
    try:
        transactions = await asyncio.to_thread(_parse_stored, file_id)
    except StatementNotFound:
        raise HTTPException(status_code=404, detail="Statement not found")
    except ExtractionTimeout:
        raise HTTPException(status_code=504, detail="Analysis timed out")
    except ExtractionError:
        raise HTTPException(
            status_code=502, detail="Failed to analyze document. Ensure it is a valid bank statement."
        )

    if not transactions:
        raise HTTPException(status_code=422, detail="No transactions found or could not parse PDF.")

    return {
        "success": True,
        "transactions": transactions,
        "demo": any(t.get("isDemo") for t in transactions),
    }


@app.post("/api/dashboard/summary")
async def dashboard_summary(req: AdvisorRequest):
    transactions = _require_list(req.transactions)
    summary = summarize(transactions)
    ratios = compute_ratios(transactions, summary)
    return {
        **summary,
        "ratios": ratios,
        "insights": generate_insights(ratios, summary, req.objectives),
        "objectives": [objective_progress(o, summary["monthly_surplus"]) for o in req.objectives],
        "advice": advice_cards(summary),
    }


@app.post("/api/advisor/instruction")
async def advisor_instruction(req: AdvisorRequest):
    transactions = _require_list(req.transactions)
    return {
        "systemInstruction": build_system_instruction(
            transactions, req.userName, req.objectives, req.activeSection
        )
    }


async def _forward_client_audio(ws: WebSocket, advisor: LiveAdvisorSession):
    while True:
        msg = await ws.receive_json()
        kind = msg.get("type")
        if kind == "audio":
            samples = float32_from_bytes(decode(msg.get("data", "")))
            await advisor.send_audio(samples, float(msg.get("sampleRate") or 16000))
        elif kind == "end":
            await advisor.end_audio()
        elif kind == "stop":
            return


async def _forward_advisor_events(ws: WebSocket, advisor: LiveAdvisorSession):
    async for event in advisor.events():
        await ws.send_json(event)


@app.websocket("/api/advisor/live")
async def advisor_live(ws: WebSocket):
    """
    Relay between a browser microphone and a Gemini Live session.

    The client opens with ``{"type": "start", ...}`` carrying either a ready
    ``systemInstruction`` or the same fields as /api/advisor/instruction,
    then streams ``{"type": "audio", "data": <base64 float32>, "sampleRate": n}``
    frames and finishes with ``{"type": "stop"}``.
    """
    await ws.accept()
    try:
        start = await ws.receive_json()
        if start.get("type") != "start":
            await ws.send_json({"type": "error", "message": "Expected a start message"})
            await ws.close(code=1008)
            return

        instruction = start.get("systemInstruction")
        if not instruction:
            req = AdvisorRequest(**{k: v for k, v in start.items() if k != "type"})
            instruction = build_system_instruction(
                _require_list(req.transactions or []), req.userName, req.objectives, req.activeSection
            )

        async with LiveAdvisorSession(instruction) as advisor:
            await ws.send_json({"type": "open"})
            tasks = {
                asyncio.create_task(_forward_client_audio(ws, advisor)),
                asyncio.create_task(_forward_advisor_events(ws, advisor)),
            }
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                exc = task.exception()
                if exc is not None:
                    raise exc

        await ws.send_json({"type": "closed"})
        await ws.close()
    except WebSocketDisconnect:
        logger.info("[Live] Client disconnected")
    except AdvisorUnavailable as exc:
        await ws.send_json({"type": "error", "message": str(exc)})
        await ws.close(code=1011)
    except HTTPException as exc:
        await ws.send_json({"type": "error", "message": exc.detail})
        await ws.close(code=1008)
    except Exception as exc:
        logger.exception("[Live] Live session error")
        await ws.send_json({"type": "error", "message": str(exc) or "Unknown error"})
        await ws.close(code=1011)


@app.get("/health")
async def health():
    return {"status": "ok", "mode": "persistent" if get_store().persistent else "mock"}


def main():
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    store = get_store()
    logger.info("Backend server running on http://localhost:%d", PORT)
    logger.info("Infrastructure Mode: %s", "PERSISTENT (Database)" if store.persistent else "EPHEMERAL (Mock)")
    uvicorn.run("mafifulus.server:app", host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
