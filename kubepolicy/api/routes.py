"""Route handlers for the KubePolicy REST API.

Topology endpoints build a fresh topology from the controller's Store on every
request; nothing is cached between requests.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kubepolicy.api.schemas import (
    EffectivePoliciesResponse,
    EffectivePolicySchema,
    ErrorResponse,
    HealthResponse,
    PathsResponse,
    ReadyResponse,
    RuleSchema,
    TopologyResponse,
)
from kubepolicy.graph import Topology
from kubepolicy.machinery.merge import effective_policy_for_path
from kubepolicy.machinery.objects import GroupKind

router = APIRouter()
probes = APIRouter()


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, detail=detail).model_dump())


def _topology(request: Request) -> Topology | JSONResponse:
    controller = request.app.state.controller
    if not controller.is_ready():
        return _error(503, "NOT_READY", "Controller has not completed its initial sync.")
    return controller.build_topology()


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


@probes.get("/healthz", response_model=HealthResponse)
async def healthz(request: Request) -> HealthResponse:
    return HealthResponse(version=request.app.version)


@probes.get("/readyz", response_model=ReadyResponse, responses={503: {"model": ReadyResponse}})
async def readyz(request: Request) -> JSONResponse:
    controller = request.app.state.controller
    body = ReadyResponse(ready=controller.is_ready(), state=str(controller.state), cycles=controller.cycles)
    return JSONResponse(status_code=200 if body.ready else 503, content=body.model_dump())


@probes.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ---------------------------------------------------------------------------
# Topology
# ---------------------------------------------------------------------------


@router.get("/topology", response_model=TopologyResponse, responses={503: {"model": ErrorResponse}})
async def get_topology(request: Request) -> TopologyResponse | JSONResponse:
    topology = _topology(request)
    if isinstance(topology, JSONResponse):
        return topology
    return TopologyResponse.from_topology(topology)


@router.get("/topology/paths", response_model=PathsResponse, responses={404: {"model": ErrorResponse}})
async def get_paths(
    request: Request,
    from_: str | None = Query(None, alias="from"),
    to: str | None = Query(None),
) -> PathsResponse | JSONResponse:
    topology = _topology(request)
    if isinstance(topology, JSONResponse):
        return topology
    for locator in (from_, to):
        if locator is not None and locator not in topology.targetables():
            return _error(404, "NOT_FOUND", f"No targetable with locator {locator!r}.")
    paths = topology.paths(from_=from_, to=to)
    return PathsResponse(paths=[[node.locator for node in path] for path in paths])


@router.get("/topology/dot", response_class=PlainTextResponse)
async def get_dot(request: Request) -> Response:
    topology = _topology(request)
    if isinstance(topology, JSONResponse):
        return topology
    return PlainTextResponse(topology.to_dot(), media_type="text/vnd.graphviz")


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@router.get("/policies/{group}/{kind}/effective", response_model=EffectivePoliciesResponse)
async def get_effective_policies(request: Request, group: str, kind: str) -> EffectivePoliciesResponse | JSONResponse:
    """Effective policy of one kind for every root-to-leaf path that has one.

    ``group`` is the policy's API group (``core`` for the empty group).
    """
    topology = _topology(request)
    if isinstance(topology, JSONResponse):
        return topology
    policy_kind = GroupKind("" if group == "core" else group, kind)
    effective = []
    for path in topology.paths():
        policy = effective_policy_for_path(path, policy_kind)
        if policy is None:
            continue
        rules = [
            RuleSchema(name=name, spec=rule.spec, source=rule.source) for name, rule in sorted(policy.rules().items())
        ]
        effective.append(EffectivePolicySchema(path=[node.locator for node in path], rules=rules))
    return EffectivePoliciesResponse(kind=str(policy_kind), effective=effective)
