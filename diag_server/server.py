from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from diag_server import mcp_app
from diag_server.mcp_app import BundleNotFoundError

"""HTTP shim over the MCP tool implementations for clients without MCP."""

app = FastAPI(title="nodediag-mcp-shim")


class ParseRequest(BaseModel):
    content: str
    filename: Optional[str] = None
    family: Optional[str] = None


class LoadFileRequest(BaseModel):
    path: str
    family: Optional[str] = None
    force: bool = False
    reference_date: Optional[str] = None


class LoadClusterRequest(BaseModel):
    path: str
    force: bool = False


class SeriesRequest(BaseModel):
    metrics: List[str]
    start: Optional[str] = None
    end: Optional[str] = None


def _call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except BundleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/")
def root():
    return {"status": "ok", "service": "nodediag-mcp-shim"}


@app.get("/healthz")
def healthz():
    return mcp_app._healthz_impl()


@app.post("/parse")
def parse(body: ParseRequest):
    return _call(mcp_app._parse_text_impl, body.content, filename=body.filename, family=body.family)


@app.post("/files/load")
def load_file(body: LoadFileRequest):
    return _call(mcp_app._load_file_impl, body.path, family=body.family, force=body.force,
                 reference_date=body.reference_date)


@app.post("/clusters/load")
def load_cluster(body: LoadClusterRequest):
    return _call(mcp_app._load_cluster_impl, body.path, force=body.force)


@app.get("/bundles")
def list_bundles():
    return mcp_app._list_bundles_impl()


@app.get("/active_context")
def active_context():
    return mcp_app._active_context_impl()


@app.get("/bundles/{bundle_id}/metrics")
def list_metrics(bundle_id: str, prefix: Optional[str] = None, limit: int = mcp_app.DEFAULT_METRIC_LIMIT):
    return _call(mcp_app._list_metrics_impl, bundle_id=bundle_id, prefix=prefix, limit=limit)


@app.post("/bundles/{bundle_id}/series")
def get_series(bundle_id: str, body: SeriesRequest):
    return _call(mcp_app._get_series_impl, body.metrics, bundle_id=bundle_id, start=body.start, end=body.end)


@app.delete("/bundles/{bundle_id}")
def unload_bundle(bundle_id: str):
    return _call(mcp_app._unload_impl, bundle_id=bundle_id)
