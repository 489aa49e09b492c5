"""Topology crawler for the flow engine.

Turns the process-group hierarchy exposed by the REST API into two graphs:

- ProcessorGraph: processors keyed by id, with connection edges
- ProcessGroupTree: process-group containment, rooted at the crawl root

Graphs are rebuilt from scratch every refresh cycle. A fetch failure for one
group is logged and skipped; only the root group lookup is fatal.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from fcs_monitor.client import Fetch, FetchError
from fcs_monitor.payload import as_int, dig, entries, text

log = structlog.get_logger()

PG_ENDPOINT = "/process-groups/"

# direction -> (endpoint suffix, list field)
PORT_ENDPOINTS = {
    "input": ("/input-ports", "inputPorts"),
    "output": ("/output-ports", "outputPorts"),
}

PLACEHOLDER_SOURCE = "unknown-src"
PLACEHOLDER_DESTINATION = "unknown-dst"


class RootGroupUnavailable(FetchError):
    """The crawl root could not be resolved; nothing can be built this cycle."""


@dataclass
class ProcessorNode:
    """A processor (or port pseudo-node) seen in the flow."""

    id: str
    name: str = "-"
    type: str = "unknown"
    outgoing: set[str] = field(default_factory=set)
    incoming: set[str] = field(default_factory=set)
    active_thread_count: int = 0

    @property
    def fan_out(self) -> int:
        return len(self.outgoing)

    @property
    def degree(self) -> int:
        return len(self.incoming) + len(self.outgoing)


@dataclass
class ProcessGroupNode:
    """A process group and the ids of its direct child groups."""

    id: str
    name: str = "-"
    children: list[str] = field(default_factory=list)


@dataclass
class ProcessorGraph:
    """Processors keyed by id.

    Every id referenced by an edge is also a key: connection endpoints that were
    never declared as processors get placeholder nodes.
    """

    nodes: dict[str, ProcessorNode] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __getitem__(self, node_id: str) -> ProcessorNode:
        return self.nodes[node_id]

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def upsert(
        self, node_id: str, name: str, type_: str, active_thread_count: int = 0
    ) -> ProcessorNode:
        """Declare a processor, keeping edges of any placeholder already present."""
        node = self.nodes.get(node_id)
        if node is None:
            node = ProcessorNode(id=node_id)
            self.nodes[node_id] = node
        node.name = name
        node.type = type_
        node.active_thread_count = max(0, active_thread_count)
        return node

    def ensure(self, node_id: str, placeholder_name: str) -> ProcessorNode:
        """Return the node, creating a placeholder if it has not been seen."""
        node = self.nodes.get(node_id)
        if node is None:
            node = ProcessorNode(id=node_id, name=placeholder_name)
            self.nodes[node_id] = node
        return node

    def connect(self, source_id: str, destination_id: str) -> None:
        source = self.ensure(source_id, PLACEHOLDER_SOURCE)
        destination = self.ensure(destination_id, PLACEHOLDER_DESTINATION)
        source.outgoing.add(destination_id)
        destination.incoming.add(source_id)


@dataclass
class ProcessGroupTree:
    """Process-group containment keyed by id, rooted at root_id."""

    root_id: str
    nodes: dict[str, ProcessGroupNode] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, group_id: object) -> bool:
        return group_id in self.nodes

    @property
    def is_empty(self) -> bool:
        return not self.nodes


@dataclass(frozen=True)
class PortCounts:
    """Distinct input/output port counts across a group hierarchy."""

    input: int = 0
    output: int = 0


@dataclass
class Topology:
    """Everything crawled for one group in one cycle."""

    processors: ProcessorGraph
    groups: ProcessGroupTree
    ports: PortCounts


def _parse_child_ids(doc: object) -> list[str]:
    """Ids of the groups in a `/process-groups/{id}/process-groups` listing."""
    ids = []
    for child in entries(doc, "processGroups"):
        child_id = dig(child, "component", "id") or child.get("id")
        if child_id:
            ids.append(str(child_id))
    return ids


class GraphBuilder:
    """Builds topology graphs by crawling process groups through a Fetch client."""

    def __init__(self, client: Fetch) -> None:
        self._client = client

    def resolve_root(self, group_id: str) -> tuple[str, dict]:
        """Fetch the crawl root. Accepts aliases such as "root".

        Returns:
            (resolved group id, root group document)

        Raises:
            RootGroupUnavailable: If the fetch fails or the response has no id.
        """
        path = f"{PG_ENDPOINT}{group_id}"
        try:
            doc = self._client.fetch(path)
        except FetchError as e:
            raise RootGroupUnavailable(path, e.reason) from e
        root_id = dig(doc, "id")
        if not root_id:
            raise RootGroupUnavailable(path, "response has no id")
        return str(root_id), doc

    def crawl_group_ids(self, root_group_id: str) -> list[str]:
        """Depth-first pre-order list of the root and all nested group ids."""
        if not root_group_id:
            return []
        root_id, _ = self.resolve_root(root_group_id)
        out: list[str] = []
        self._crawl(root_id, out, visiting=set())
        log.debug("groups_crawled", root_id=root_id, groups=len(out))
        return out

    def _child_group_ids(self, group_id: str) -> list[str]:
        return _parse_child_ids(self._client.fetch(f"{PG_ENDPOINT}{group_id}/process-groups"))

    def _crawl(self, group_id: str, out: list[str], visiting: set[str]) -> None:
        if group_id in visiting:
            log.warning("group_cycle_skipped", group_id=group_id)
            return
        out.append(group_id)

        try:
            children = self._child_group_ids(group_id)
        except FetchError as e:
            log.warning("group_children_failed", group_id=group_id, error=e.reason)
            return

        visiting.add(group_id)
        for child_id in children:
            self._crawl(child_id, out, visiting)
        visiting.discard(group_id)

    def build_processor_graph(
        self, root_group_id: str, group_ids: list[str] | None = None
    ) -> ProcessorGraph:
        """Build the processor dependency graph across all nested groups.

        Args:
            root_group_id: Crawl root (id or alias such as "root")
            group_ids: Pre-crawled group ids, to avoid crawling again
        """
        graph = ProcessorGraph()
        if not root_group_id:
            return graph
        if group_ids is None:
            group_ids = self.crawl_group_ids(root_group_id)

        for group_id in group_ids:
            try:
                self._add_processors(graph, group_id)
                self._add_connections(graph, group_id)
            except FetchError as e:
                log.warning("group_processors_failed", group_id=group_id, error=e.reason)
        return graph

    def _add_processors(self, graph: ProcessorGraph, group_id: str) -> None:
        doc = self._client.fetch(f"{PG_ENDPOINT}{group_id}/processors")
        for entry in entries(doc, "processors"):
            snapshot = dig(entry, "status", "aggregateSnapshot")
            if not isinstance(snapshot, dict):
                snapshot = {}
            processor_id = snapshot.get("id") or entry.get("id")
            if not processor_id:
                continue
            graph.upsert(
                str(processor_id),
                name=text(snapshot.get("name"), "-"),
                type_=text(snapshot.get("type"), "unknown"),
                active_thread_count=as_int(snapshot.get("activeThreadCount"), 0),
            )

    def _add_connections(self, graph: ProcessorGraph, group_id: str) -> None:
        doc = self._client.fetch(f"{PG_ENDPOINT}{group_id}/connections")
        for entry in entries(doc, "connections"):
            source_id = dig(entry, "component", "source", "id") or entry.get("sourceId")
            destination_id = dig(entry, "component", "destination", "id") or entry.get(
                "destinationId"
            )
            if source_id and destination_id:
                graph.connect(str(source_id), str(destination_id))

    def build_process_group_tree(self, root_group_id: str) -> ProcessGroupTree:
        """Build the process-group containment tree with group names."""
        if not root_group_id:
            return ProcessGroupTree(root_id="")
        root_id, root_doc = self.resolve_root(root_group_id)
        tree = ProcessGroupTree(root_id=root_id)
        self._crawl_hierarchy(root_id, tree, visiting=set(), doc=root_doc)
        return tree

    def _crawl_hierarchy(
        self,
        group_id: str,
        tree: ProcessGroupTree,
        visiting: set[str],
        doc: object = None,
    ) -> None:
        if group_id in visiting:
            log.warning("group_cycle_skipped", group_id=group_id)
            return

        try:
            if doc is None:
                doc = self._client.fetch(f"{PG_ENDPOINT}{group_id}")
        except FetchError as e:
            log.warning("group_fetch_failed", group_id=group_id, error=e.reason)
            return

        component = dig(doc, "component")
        if not isinstance(component, dict):
            log.warning("group_missing_component", group_id=group_id)
            return

        node = ProcessGroupNode(id=group_id, name=text(component.get("name"), "-"))
        tree.nodes[group_id] = node

        try:
            children = self._child_group_ids(group_id)
        except FetchError as e:
            log.warning("group_children_failed", group_id=group_id, error=e.reason)
            return

        visiting.add(group_id)
        for child_id in children:
            node.children.append(child_id)
            self._crawl_hierarchy(child_id, tree, visiting)
        visiting.discard(group_id)

    def count_ports(
        self, direction: str, root_group_id: str, group_ids: list[str] | None = None
    ) -> int:
        """Count distinct input or output ports across all nested groups.

        Raises:
            ValueError: If direction is not "input" or "output".
        """
        try:
            suffix, field_name = PORT_ENDPOINTS[direction]
        except KeyError:
            raise ValueError(
                f"Invalid port direction: {direction!r}. Must be one of {list(PORT_ENDPOINTS)}"
            ) from None

        if not root_group_id:
            return 0
        if group_ids is None:
            group_ids = self.crawl_group_ids(root_group_id)

        ports: dict[str, str] = {}
        for group_id in group_ids:
            try:
                doc = self._client.fetch(f"{PG_ENDPOINT}{group_id}{suffix}")
            except FetchError as e:
                log.warning(
                    "group_ports_failed", group_id=group_id, direction=direction, error=e.reason
                )
                continue
            for port in entries(doc, field_name):
                port_id = port.get("id") or dig(port, "component", "id")
                if port_id:
                    ports[str(port_id)] = text(dig(port, "component", "name"), "-")
        return len(ports)

    def build_topology(self, root_group_id: str) -> Topology:
        """Crawl once and build both graphs plus port counts for a group.

        Raises:
            RootGroupUnavailable: If the root group cannot be fetched.
        """
        group_ids = self.crawl_group_ids(root_group_id)
        topology = Topology(
            processors=self.build_processor_graph(root_group_id, group_ids),
            groups=self.build_process_group_tree(root_group_id),
            ports=PortCounts(
                input=self.count_ports("input", root_group_id, group_ids),
                output=self.count_ports("output", root_group_id, group_ids),
            ),
        )
        log.debug(
            "topology_built",
            root_group_id=root_group_id,
            groups=len(topology.groups),
            processors=len(topology.processors),
        )
        return topology
