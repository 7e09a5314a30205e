from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from insider_signals.db import engine, init_db
from insider_signals.log_config import configure_logging
from insider_signals.settings import settings
from insider_signals.signals.refresh import PROCESSOR_ORDER, SessionFactory, run_signal_refresh, select_processors


app = FastAPI(title="Insider Signals", version="0.1.0")

origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def _startup() -> None:
    configure_logging()
    init_db()


def get_session_factory() -> SessionFactory:
    return lambda: Session(engine)


class ProcessRequest(BaseModel):
    processor: str = "all"
    as_of: Optional[datetime] = None
    notify: bool = True


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "processors": list(PROCESSOR_ORDER)}


@app.post("/process")
def process(req: ProcessRequest, session_factory: SessionFactory = Depends(get_session_factory)):
    try:
        select_processors(req.processor)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    run = run_signal_refresh(session_factory, processors=req.processor, as_of=req.as_of, notify=req.notify)
    return JSONResponse(run.as_dict(), status_code=500 if run.all_failed else 200)
