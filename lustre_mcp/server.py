"""Minimal FastAPI shim over the lustre2 MCP tools for plain HTTP callers."""
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from lustre_mcp import mcp_app

app = FastAPI(title="lustre2-mcp-shim")


class ScanRequest(BaseModel):
    ost_procfiles: Optional[List[str]] = None
    mds_procfiles: Optional[List[str]] = None
    emit_empty: bool = False


def _tool(t):
    return getattr(t, 'fn', t)


@app.get("/")
def root():
    return {"status": "ok", "service": "lustre2-mcp-shim"}

@app.get("/healthz")
def healthz():
    return mcp_app.healthz()

@app.post("/lustre2/scan")
def scan(req: ScanRequest):
    out = mcp_app._scan_lustre_impl(req.ost_procfiles, req.mds_procfiles, req.emit_empty)
    if 'error' in out:
        raise HTTPException(status_code=422, detail=out)
    return out

@app.get("/lustre2/sample_config")
def sample_config():
    return _tool(mcp_app.sample_config)()

@app.get("/lustre2/status")
def status():
    return _tool(mcp_app.ingest_status)()
