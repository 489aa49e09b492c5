"""Shared test fixtures for fcs-monitor."""

from contextlib import ExitStack
from pathlib import Path
from typing import Any, Iterator
from unittest.mock import patch

import pytest

from fcs_monitor.client import FetchError
from fcs_monitor.config import Config

ROOT_ID = "pg-root"


class FakeFlowApi:
    """In-memory Fetch implementation keyed by API path.

    Paths not registered raise FetchError like a 404 would; paths listed in
    `failing` raise as if the request had timed out.
    """

    def __init__(self, responses: dict[str, Any] | None = None, failing: set[str] | None = None):
        self.responses = dict(responses or {})
        self.failing = set(failing or ())
        self.calls: list[str] = []

    def fetch(self, path: str) -> Any:
        self.calls.append(path)
        if path in self.failing:
            raise FetchError(path, "timed out")
        if path not in self.responses:
            raise FetchError(path, "HTTP 404")
        return self.responses[path]


def make_group(
    name: str = "-",
    children: list[str] | None = None,
    processors: list[dict] | None = None,
    connections: list[tuple[str, str]] | None = None,
    input_ports: list[str] | None = None,
    output_ports: list[str] | None = None,
) -> dict:
    """Describe one process group for flow_responses()."""
    return {
        "name": name,
        "children": children or [],
        "processors": processors or [],
        "connections": connections or [],
        "input_ports": input_ports or [],
        "output_ports": output_ports or [],
    }


def make_processor(
    processor_id: str, name: str = "proc", type_: str = "org.apache.nifi.LogAttribute", threads: int = 0
) -> dict:
    """Processor entity as returned by /process-groups/{id}/processors."""
    return {
        "id": processor_id,
        "status": {
            "aggregateSnapshot": {
                "id": processor_id,
                "name": name,
                "type": type_,
                "activeThreadCount": threads,
            }
        },
    }


def flow_responses(groups: dict[str, dict], root_id: str = ROOT_ID) -> dict[str, Any]:
    """Build the path -> JSON map for a hierarchy of groups.

    The "root" alias resolves to root_id.
    """
    responses: dict[str, Any] = {}
    for group_id, group in groups.items():
        base = f"/process-groups/{group_id}"
        responses[base] = {"id": group_id, "component": {"id": group_id, "name": group["name"]}}
        responses[f"{base}/process-groups"] = {
            "processGroups": [{"id": c, "component": {"id": c}} for c in group["children"]]
        }
        responses[f"{base}/processors"] = {"processors": group["processors"]}
        responses[f"{base}/connections"] = {
            "connections": [
                {"component": {"source": {"id": s}, "destination": {"id": d}}}
                for s, d in group["connections"]
            ]
        }
        responses[f"{base}/input-ports"] = {
            "inputPorts": [{"id": p, "component": {"id": p, "name": p}} for p in group["input_ports"]]
        }
        responses[f"{base}/output-ports"] = {
            "outputPorts": [{"id": p, "component": {"id": p, "name": p}} for p in group["output_ports"]]
        }
    if root_id in groups:
        responses["/process-groups/root"] = responses[f"/process-groups/{root_id}"]
    return responses


@pytest.fixture
def sample_flow() -> dict[str, dict]:
    """Root with two children; one child has a nested grandchild.

    pg-root         (RouteOnAttribute -> PutFile, SplitJson)
    ├── pg-ingest   (in-1 -> GetFile -> ExecuteScript -> RouteOnAttribute)
    │   └── pg-parse  (SplitJson -> "Eval ${route}")
    └── pg-egress   (PutFile -> out-1)

    Eight graph nodes (six processors plus the two port endpoints), max
    depth 2, fan-out total 7, one integration point, two scripted nodes.
    """
    return {
        ROOT_ID: make_group(
            name="Root",
            children=["pg-ingest", "pg-egress"],
            processors=[make_processor("p-route", name="RouteOnAttribute", threads=1)],
            connections=[("p-route", "p-put"), ("p-route", "p-split")],
        ),
        "pg-ingest": make_group(
            name="Ingest",
            children=["pg-parse"],
            processors=[
                make_processor("p-get", name="GetFile", threads=2),
                make_processor(
                    "p-script",
                    name="Transform",
                    type_="org.apache.nifi.processors.script.ExecuteScript",
                    threads=1,
                ),
            ],
            connections=[("in-1", "p-get"), ("p-get", "p-script"), ("p-script", "p-route")],
            input_ports=["in-1"],
        ),
        "pg-parse": make_group(
            name="Parse",
            processors=[
                make_processor("p-split", name="SplitJson"),
                make_processor("p-eval", name="Eval ${route}"),
            ],
            connections=[("p-split", "p-eval")],
        ),
        "pg-egress": make_group(
            name="Egress",
            processors=[make_processor("p-put", name="PutFile")],
            connections=[("p-put", "out-1")],
            output_ports=["out-1"],
        ),
    }


@pytest.fixture
def fake_api(sample_flow: dict[str, dict]) -> FakeFlowApi:
    """FakeFlowApi serving sample_flow, with no backpressure and a 512MB/1GB heap."""
    responses = flow_responses(sample_flow)
    responses["/flow/status"] = {
        "connectionStatus": [
            {"component": {"queuedCount": "10", "backPressureObjectThreshold": 10000}},
            {"component": {"queuedCount": "0", "backPressureObjectThreshold": 10000}},
        ]
    }
    responses["/system-diagnostics"] = {
        "systemDiagnostics": {
            "aggregateSnapshot": {
                "usedHeapBytes": 512 * 1024 * 1024,
                "maxHeapBytes": 1024 * 1024 * 1024,
                "processorLoadAverage": 2.0,
                "availableProcessors": 4,
            }
        }
    }
    return FakeFlowApi(responses)


def _patch_config_paths(stack: ExitStack, base_path: Path) -> None:
    """Apply Config path property patches to the given ExitStack."""
    # fmt: off
    stack.enter_context(patch.object(
        Config, "config_dir",
        new_callable=lambda: property(lambda self: base_path / "config")
    ))
    stack.enter_context(patch.object(
        Config, "state_dir",
        new_callable=lambda: property(lambda self: base_path / "state")
    ))
    stack.enter_context(patch.object(
        Config, "runtime_dir",
        new_callable=lambda: property(lambda self: base_path / "run")
    ))
    # fmt: on


@pytest.fixture
def patched_config_paths(tmp_path: Path) -> Iterator[Path]:
    """Patch Config directory properties to live under tmp_path.

    Yields the base path for tests that need to reference it directly.
    """
    with ExitStack() as stack:
        _patch_config_paths(stack, tmp_path)
        yield tmp_path
