"""
Navigation Graph
================
Directed graph of discovered page/application states.

A node is one *state*, not one URL: single-page applications can show
many states under one URL, so node ids are derived from the canonical URL
plus an optional state hash (see ``create_node_id``).  Identical
``(url, state_hash)`` pairs always map to the same id, which is what
keeps exploration from looping.

Nodes and edges are append-only.  Every non-root node records exactly one
parent (the first edge that discovered it); later edges that reach an
existing node are kept as non-tree edges.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set

from .errors import GraphLimitReached
from .link_filter import Link, canonicalize

logger = logging.getLogger(__name__)

EDGE_TYPES = ("click", "navigate", "spa", "redirect")


def create_node_id(url: str, state_hash: Optional[str] = None) -> str:
    """
    Deterministic node id for a ``(url, state_hash)`` pair.

    ``https://www.example.com/a/?q=1#top`` and ``https://example.com/a?q=1``
    share an id; a state hash is appended as ``#state:<hash>``.
    Unparsable URLs are used verbatim.
    """
    canon = canonicalize(url)
    base = canon.raw if canon is not None else url
    if state_hash:
        return f"{base}#state:{state_hash}"
    return base


# ---------------------------------------------------------------------------
# Node / Edge
# ---------------------------------------------------------------------------

@dataclass
class NavigationNode:
    """One discovered page or application state."""
    url: str
    state_hash: Optional[str] = None
    title: str = ""
    parent: Optional[str] = None
    depth: int = 0
    id: str = ""

    children: Set[str] = field(default_factory=set)
    siblings: Set[str] = field(default_factory=set)
    visit_count: int = 0
    unexplored_links: List[Link] = field(default_factory=list)
    explored_links: List[Link] = field(default_factory=list)
    skipped_links: List[Link] = field(default_factory=list)
    is_leaf: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    first_visited_at: Optional[float] = None
    last_visited_at: Optional[float] = None

    def __post_init__(self):
        if not self.id:
            self.id = create_node_id(self.url, self.state_hash)

    def record_visit(self) -> None:
        now = time.time()
        if self.first_visited_at is None:
            self.first_visited_at = now
        self.last_visited_at = now
        self.visit_count += 1

    def set_unexplored_links(self, links: List[Link]) -> None:
        explored = {l.key for l in self.explored_links + self.skipped_links}
        self.unexplored_links = [l for l in links if l.key not in explored]
        self.is_leaf = not self.unexplored_links

    def mark_link_explored(self, link: Link) -> bool:
        """Move *link* from unexplored to explored (matched by href, selector or text)."""
        for i, candidate in enumerate(self.unexplored_links):
            same = candidate.key == link.key
            if not same and link.selector:
                same = candidate.selector == link.selector
            if not same and link.text and not link.href:
                same = candidate.text == link.text
            if same:
                self.explored_links.append(self.unexplored_links.pop(i))
                if not self.unexplored_links:
                    self.is_leaf = True
                return True
        return False

    def mark_link_skipped(self, link: Link) -> bool:
        """Move *link* from unexplored to skipped; it was rejected, never followed."""
        for i, candidate in enumerate(self.unexplored_links):
            if candidate.key == link.key:
                self.skipped_links.append(self.unexplored_links.pop(i))
                if not self.unexplored_links:
                    self.is_leaf = True
                return True
        return False

    @property
    def has_unexplored_links(self) -> bool:
        return bool(self.unexplored_links)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "state_hash": self.state_hash,
            "title": self.title,
            "parent": self.parent,
            "children": sorted(self.children),
            "siblings": sorted(self.siblings),
            "depth": self.depth,
            "visit_count": self.visit_count,
            "unexplored_links": [l.to_dict() for l in self.unexplored_links],
            "explored_links": [l.to_dict() for l in self.explored_links],
            "skipped_links": [l.to_dict() for l in self.skipped_links],
            "is_leaf": self.is_leaf,
            "metadata": dict(self.metadata),
            "first_visited_at": self.first_visited_at,
            "last_visited_at": self.last_visited_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NavigationNode":
        node = cls(
            url=data["url"],
            state_hash=data.get("state_hash"),
            title=data.get("title", ""),
            parent=data.get("parent"),
            depth=data.get("depth", 0),
            id=data.get("id", ""),
        )
        node.children = set(data.get("children", []))
        node.siblings = set(data.get("siblings", []))
        node.visit_count = data.get("visit_count", 0)
        node.unexplored_links = [Link.from_dict(l) for l in data.get("unexplored_links", [])]
        node.explored_links = [Link.from_dict(l) for l in data.get("explored_links", [])]
        node.skipped_links = [Link.from_dict(l) for l in data.get("skipped_links", [])]
        node.is_leaf = data.get("is_leaf", False)
        node.metadata = dict(data.get("metadata", {}))
        node.first_visited_at = data.get("first_visited_at")
        node.last_visited_at = data.get("last_visited_at")
        return node


@dataclass
class NavigationEdge:
    """Directed edge ``from_id → to_id``."""
    from_id: str
    to_id: str
    via: Optional[Link] = None
    type: str = "click"
    is_tree: bool = True
    traverse_count: int = 1
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_id,
            "to": self.to_id,
            "via": self.via.to_dict() if self.via else None,
            "type": self.type,
            "is_tree": self.is_tree,
            "traverse_count": self.traverse_count,
            "created_at": self.created_at,
        }


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

class NavigationGraph:
    """
    State-deduplicated navigation graph with a single root.

    ``max_nodes`` (``None`` = unbounded) is the ceiling enforced by
    ``add_node``; the explorer treats ``GraphLimitReached`` as normal
    termination.
    """

    def __init__(self, max_nodes: Optional[int] = None):
        self.max_nodes = max_nodes
        self.nodes: Dict[str, NavigationNode] = {}
        self.edges: List[NavigationEdge] = []
        self.root_id: Optional[str] = None
        self._edge_index: Dict[tuple, NavigationEdge] = {}

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_node(self, node: NavigationNode) -> NavigationNode:
        """
        Insert *node* if its id is new and return the stored node.

        Re-adding a known id returns the existing node untouched.
        Raises ``GraphLimitReached`` when a new node would exceed ``max_nodes``.
        """
        existing = self.nodes.get(node.id)
        if existing is not None:
            return existing
        if self.is_full:
            raise GraphLimitReached(self.max_nodes)

        self.nodes[node.id] = node
        if node.parent and node.parent in self.nodes:
            parent = self.nodes[node.parent]
            for sibling_id in parent.children:
                sibling = self.nodes.get(sibling_id)
                if sibling is not None:
                    sibling.siblings.add(node.id)
                    node.siblings.add(sibling_id)
            parent.children.add(node.id)
        logger.debug(f"[GRAPH] + node {node.id} (depth={node.depth}, total={len(self.nodes)})")
        return node

    def add_edge(
        self,
        from_id: str,
        to_id: str,
        via: Optional[Link] = None,
        type: str = "click",
    ) -> NavigationEdge:
        """
        Append an edge between two known nodes.

        The first edge into a node whose parent is ``from_id`` is its tree
        edge; any other edge is non-tree.  Repeating an existing
        ``(from_id, to_id)`` pair bumps its ``traverse_count`` instead.
        """
        if from_id not in self.nodes or to_id not in self.nodes:
            missing = from_id if from_id not in self.nodes else to_id
            raise ValueError(f"Unknown node id: {missing}")
        if type not in EDGE_TYPES:
            raise ValueError(f"Unknown edge type: {type}")

        existing = self._edge_index.get((from_id, to_id))
        if existing is not None:
            existing.traverse_count += 1
            return existing

        target = self.nodes[to_id]
        is_tree = target.parent == from_id and not any(
            e.to_id == to_id and e.is_tree for e in self.get_edges_to(to_id)
        )
        edge = NavigationEdge(from_id=from_id, to_id=to_id, via=via, type=type, is_tree=is_tree)
        self.edges.append(edge)
        self._edge_index[(from_id, to_id)] = edge
        return edge

    def set_root(self, node_id: str) -> None:
        if node_id not in self.nodes:
            raise ValueError(f"Unknown node id: {node_id}")
        self.root_id = node_id
        root = self.nodes[node_id]
        root.depth = 0
        root.parent = None

    def mark_as_leaf(self, node_id: str) -> None:
        node = self.nodes.get(node_id)
        if node is not None:
            node.is_leaf = True

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[NavigationNode]:
        return self.nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self.nodes

    def find_node(self, url: str, state_hash: Optional[str] = None) -> Optional[NavigationNode]:
        return self.nodes.get(create_node_id(url, state_hash))

    def get_root(self) -> Optional[NavigationNode]:
        return self.nodes.get(self.root_id) if self.root_id else None

    def get_parent(self, node_id: str) -> Optional[NavigationNode]:
        node = self.nodes.get(node_id)
        if node is None or node.parent is None:
            return None
        return self.nodes.get(node.parent)

    def get_children(self, node_id: str) -> List[NavigationNode]:
        node = self.nodes.get(node_id)
        if node is None:
            return []
        return [self.nodes[c] for c in sorted(node.children) if c in self.nodes]

    def get_siblings(self, node_id: str) -> List[NavigationNode]:
        node = self.nodes.get(node_id)
        if node is None:
            return []
        return [self.nodes[s] for s in sorted(node.siblings) if s in self.nodes]

    def get_edges_from(self, node_id: str) -> List[NavigationEdge]:
        return [e for e in self.edges if e.from_id == node_id]

    def get_edges_to(self, node_id: str) -> List[NavigationEdge]:
        return [e for e in self.edges if e.to_id == node_id]

    def has_edge(self, from_id: str, to_id: str) -> bool:
        return (from_id, to_id) in self._edge_index

    @property
    def size(self) -> int:
        return len(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    @property
    def is_full(self) -> bool:
        return self.max_nodes is not None and len(self.nodes) >= self.max_nodes

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _neighbours(self, node_id: str) -> List[str]:
        out = [e.to_id for e in self.edges if e.from_id == node_id]
        node = self.nodes.get(node_id)
        if node is not None:
            out.extend(sorted(node.children))
        return out

    def get_path(self, from_id: str, to_id: str) -> Optional[List[str]]:
        """Shortest id path ``from_id → to_id`` (BFS), or ``None``."""
        if from_id not in self.nodes or to_id not in self.nodes:
            return None
        if from_id == to_id:
            return [from_id]
        prev: Dict[str, Optional[str]] = {from_id: None}
        queue = deque([from_id])
        while queue:
            current = queue.popleft()
            for nxt in self._neighbours(current):
                if nxt in prev:
                    continue
                prev[nxt] = current
                if nxt == to_id:
                    path = [to_id]
                    while prev[path[-1]] is not None:
                        path.append(prev[path[-1]])
                    return list(reversed(path))
                queue.append(nxt)
        return None

    def get_ancestors(self, node_id: str) -> List[NavigationNode]:
        """Parents from nearest to root."""
        out: List[NavigationNode] = []
        seen = {node_id}
        parent = self.get_parent(node_id)
        while parent is not None and parent.id not in seen:
            out.append(parent)
            seen.add(parent.id)
            parent = self.get_parent(parent.id)
        return out

    def get_descendants(self, node_id: str) -> List[NavigationNode]:
        out: List[NavigationNode] = []
        seen = {node_id}
        queue = deque([node_id])
        while queue:
            for child in self.get_children(queue.popleft()):
                if child.id in seen:
                    continue
                seen.add(child.id)
                out.append(child)
                queue.append(child.id)
        return out

    def iter_bfs(self) -> Iterator[NavigationNode]:
        """Tree nodes in breadth-first order from the root, then any strays."""
        seen: Set[str] = set()
        if self.root_id:
            queue = deque([self.root_id])
            seen.add(self.root_id)
            while queue:
                node = self.nodes[queue.popleft()]
                yield node
                for child in self.get_children(node.id):
                    if child.id not in seen:
                        seen.add(child.id)
                        queue.append(child.id)
        for node_id, node in self.nodes.items():
            if node_id not in seen:
                yield node

    def get_nodes_at_depth(self, depth: int) -> List[NavigationNode]:
        return [n for n in self.nodes.values() if n.depth == depth]

    def get_max_depth(self) -> int:
        return max((n.depth for n in self.nodes.values()), default=0)

    def get_unexplored_nodes(self) -> List[NavigationNode]:
        return [n for n in self.nodes.values() if n.unexplored_links]

    def find_best_next_node(self) -> Optional[NavigationNode]:
        """Shallowest node that still has unexplored links."""
        candidates = self.get_unexplored_nodes()
        if not candidates:
            return None
        return min(candidates, key=lambda n: (n.depth, -len(n.unexplored_links)))

    def get_visited_titles(self) -> List[str]:
        return [n.title for n in self.nodes.values() if n.title]

    def get_visited_urls(self) -> List[str]:
        out: List[str] = []
        for n in self.nodes.values():
            if n.url not in out:
                out.append(n.url)
        return out

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_summary(self) -> Dict[str, Any]:
        root = self.get_root()
        by_depth = Counter(n.depth for n in self.nodes.values())
        by_type = Counter(e.type for e in self.edges)
        return {
            "total_nodes": len(self.nodes),
            "total_edges": len(self.edges),
            "tree_edges": sum(1 for e in self.edges if e.is_tree),
            "max_depth": self.get_max_depth(),
            "visited_nodes": sum(1 for n in self.nodes.values() if n.visit_count > 0),
            "leaf_nodes": sum(1 for n in self.nodes.values() if n.is_leaf),
            "nodes_with_unexplored_links": len(self.get_unexplored_nodes()),
            "total_unexplored_links": sum(len(n.unexplored_links) for n in self.nodes.values()),
            "root_url": root.url if root else None,
            "nodes_by_depth": dict(sorted(by_depth.items())),
            "edges_by_type": dict(sorted(by_type.items())),
        }

    def to_mermaid(self, show_urls: bool = False, show_depth: bool = False) -> str:
        """Mermaid ``graph TD`` diagram of the tree and non-tree edges."""
        lines = ["graph TD"]
        short: Dict[str, str] = {}
        for i, node in enumerate(self.iter_bfs()):
            short[node.id] = f"N{i}"
            label = node.title or node.url
            if show_urls and node.title:
                label = f"{node.title}<br/>{node.url}"
            if show_depth:
                label = f"{label} (d{node.depth})"
            lines.append(f'    {short[node.id]}["{_mermaid_label(label)}"]')

        for edge in self.edges:
            a, b = short.get(edge.from_id), short.get(edge.to_id)
            if a is None or b is None:
                continue
            arrow = "-->" if edge.is_tree else "-.->"
            text = edge.via.text[:20] if edge.via and edge.via.text else ""
            if text:
                lines.append(f'    {a} {arrow}|"{_mermaid_label(text)}"| {b}')
            else:
                lines.append(f"    {a} {arrow} {b}")

        lines.append("    classDef root fill:#4f46e5,color:#fff")
        lines.append("    classDef leaf fill:#d1fae5")
        lines.append("    classDef unexplored fill:#fef3c7")
        for node_id, sid in short.items():
            node = self.nodes[node_id]
            if node_id == self.root_id:
                lines.append(f"    class {sid} root")
            elif node.unexplored_links:
                lines.append(f"    class {sid} unexplored")
            elif node.is_leaf:
                lines.append(f"    class {sid} leaf")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_id": self.root_id,
            "max_nodes": self.max_nodes,
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "edges": [e.to_dict() for e in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NavigationGraph":
        graph = cls(max_nodes=data.get("max_nodes"))
        for raw in data.get("nodes", []):
            node = NavigationNode.from_dict(raw)
            graph.nodes[node.id] = node
        for raw in data.get("edges", []):
            via = Link.from_dict(raw["via"]) if raw.get("via") else None
            edge = NavigationEdge(
                from_id=raw["from"],
                to_id=raw["to"],
                via=via,
                type=raw.get("type", "click"),
                is_tree=raw.get("is_tree", True),
                traverse_count=raw.get("traverse_count", 1),
                created_at=raw.get("created_at", time.time()),
            )
            graph.edges.append(edge)
            graph._edge_index[(edge.from_id, edge.to_id)] = edge
        graph.root_id = data.get("root_id")
        return graph


def _mermaid_label(text: str) -> str:
    text = " ".join(str(text).split())
    text = text.replace('"', "'").replace("[", "(").replace("]", ")")
    if len(text) > 40:
        text = text[:37] + "..."
    return text
