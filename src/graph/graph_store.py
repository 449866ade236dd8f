"""
Graph Store：带标签的有向图（NetworkX DiGraph），支持按匹配 upsert。

节点属性 label 区分实体种类（默认 Eprint），边属性 rel 区分关系类型（CITES）。
写入通过 `transaction()` 累积，`execute()` 在一把 RLock 下整体应用，
读者只会看到事务前或事务后的图。可选 JSON 落盘（与 save/load 格式对称）。
"""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import networkx as nx

from src.log import get_logger

logger = get_logger(__name__)


class GraphTransaction:
    """merge_edge 的累积器；execute() 返回实际落地（两端都存在）的边数。"""

    def __init__(self, store: "NetworkxGraphStore"):
        self._store = store
        self._ops: List[Tuple[str, str, str, str, Dict[str, Any], Dict[str, Any]]] = []

    def merge_edge(
        self,
        src: str,
        dst: str,
        *,
        label: str,
        rel: str,
        set_props: Dict[str, Any],
        on_create: Optional[Dict[str, Any]] = None,
    ) -> "GraphTransaction":
        """仅当 src、dst 都是 label 节点时匹配或创建 (src)-[rel]->(dst)；on_create 只在新建时写入。"""
        self._ops.append((src, dst, label, rel, dict(set_props), dict(on_create or {})))
        return self

    def __len__(self) -> int:
        return len(self._ops)

    def execute(self) -> int:
        ops, self._ops = self._ops, []
        return self._store._apply(ops)


class NetworkxGraphStore:
    def __init__(self, graph_path: Optional[Path] = None, autosave: bool = False):
        self.G = nx.DiGraph()
        self.graph_path = Path(graph_path) if graph_path else None
        self.autosave = autosave and self.graph_path is not None
        self._lock = threading.RLock()
        if self.graph_path and self.graph_path.exists():
            self.load(self.graph_path)

    @contextmanager
    def locked(self) -> Iterator[nx.DiGraph]:
        """多步读取需要一致快照时使用。"""
        with self._lock:
            yield self.G

    # ========== 节点 ==========

    def upsert_node(self, node_id: str, label: str, **props: Any) -> None:
        with self._lock:
            if self.G.has_node(node_id):
                self.G.nodes[node_id].update(props, label=label)
            else:
                self.G.add_node(node_id, label=label, **props)
            self._maybe_save()

    def remove_node(self, node_id: str) -> bool:
        with self._lock:
            if not self.G.has_node(node_id):
                return False
            self.G.remove_node(node_id)
            self._maybe_save()
            return True

    def has_node(self, node_id: str, label: Optional[str] = None) -> bool:
        with self._lock:
            if not self.G.has_node(node_id):
                return False
            return label is None or self.G.nodes[node_id].get("label") == label

    def node_props(self, node_id: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self.G.nodes[node_id]) if self.G.has_node(node_id) else {}

    # ========== 边 ==========

    def transaction(self) -> GraphTransaction:
        return GraphTransaction(self)

    def _apply(self, ops) -> int:
        applied = 0
        with self._lock:
            for src, dst, label, rel, set_props, on_create in ops:
                if not (self.has_node(src, label) and self.has_node(dst, label)):
                    continue
                if self.G.has_edge(src, dst) and self.G[src][dst].get("rel") == rel:
                    self.G[src][dst].update(set_props)
                else:
                    self.G.add_edge(src, dst, **{**on_create, **set_props, "rel": rel})
                applied += 1
            if applied:
                self._maybe_save()
        return applied

    def in_edges(self, node_id: str, rel: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            if not self.G.has_node(node_id):
                return []
            return [(u, dict(d)) for u, _, d in self.G.in_edges(node_id, data=True) if d.get("rel") == rel]

    def out_edges(self, node_id: str, rel: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            if not self.G.has_node(node_id):
                return []
            return [(v, dict(d)) for _, v, d in self.G.out_edges(node_id, data=True) if d.get("rel") == rel]

    def edge(self, src: str, dst: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return dict(self.G[src][dst]) if self.G.has_edge(src, dst) else None

    def remove_edges(self, node_id: str, rel: str) -> int:
        """删除 node_id 作为任一端点的 rel 边。"""
        with self._lock:
            if not self.G.has_node(node_id):
                return 0
            doomed = [(u, v) for u, v, d in self.G.in_edges(node_id, data=True) if d.get("rel") == rel]
            doomed += [(u, v) for u, v, d in self.G.out_edges(node_id, data=True) if d.get("rel") == rel]
            self.G.remove_edges_from(doomed)
            if doomed:
                self._maybe_save()
            return len(doomed)

    # ========== 持久化 ==========

    def _maybe_save(self) -> None:
        if self.autosave:
            self.save(self.graph_path)

    def save(self, path: Optional[Path] = None) -> None:
        """在锁内序列化成字符串，写文件在锁外进行。"""
        path = Path(path or self.graph_path)
        with self._lock:
            payload = json.dumps(
                {
                    "nodes": list(self.G.nodes(data=True)),
                    "edges": list(self.G.edges(data=True)),
                },
                ensure_ascii=False,
            )
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(payload)
        tmp.replace(path)
        logger.debug("graph saved: %s", path)

    def load(self, path: Path) -> None:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        G = nx.DiGraph()
        for node, attrs in data.get("nodes", []):
            G.add_node(node, **attrs)
        for u, v, attrs in data.get("edges", []):
            G.add_edge(u, v, **attrs)
        with self._lock:
            self.G = G
        logger.info("graph loaded: %d nodes, %d edges", G.number_of_nodes(), G.number_of_edges())

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"nodes": self.G.number_of_nodes(), "edges": self.G.number_of_edges()}
