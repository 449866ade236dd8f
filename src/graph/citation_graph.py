"""
Citation Graph Engine：维护 (citing)-[CITES]->(cited) 有向图。

闭世界约束：只有两端都已是 Eprint 实体时边才会落地；未知端点静默跳过（debug 日志），
不重试、不排队、不算失败。enrichment 插件会周期性重跑，所以 upsert 必须幂等：
  - 匹配键为 (citing_uri, cited_uri)
  - 每次覆盖 is_influential / source / updated_at
  - discovered_at 只在新建时写入
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Callable, Iterable, List, Optional

from src.core.errors import IndexServiceError, ValidationError
from src.core.result import Result
from src.db.models import now_ms as _now_ms
from src.graph.graph_store import NetworkxGraphStore
from src.graph.models import CitationCounts, CitationEdge, CoCitationResult, PagedCitations
from src.log import get_logger
from src.observability import metrics, tracer

logger = get_logger(__name__)

CITES = "CITES"
DEFAULT_ENTITY_LABEL = "Eprint"


def _validate_uri(uri: str, field: str = "uri") -> None:
    if not isinstance(uri, str) or "://" not in uri or any(c.isspace() for c in uri):
        raise ValidationError(f"invalid uri: {uri!r}", field=field)


class CitationGraphEngine:
    def __init__(
        self,
        store: NetworkxGraphStore,
        *,
        entity_label: str = DEFAULT_ENTITY_LABEL,
        max_page_size: int = 1000,
        default_page_size: int = 100,
        co_citation_limit: int = 50,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.label = entity_label
        self.max_page_size = max_page_size
        self.default_page_size = default_page_size
        self.co_citation_limit = co_citation_limit
        self._clock = clock

    @classmethod
    def from_settings(cls, store: NetworkxGraphStore, graph_cfg, citation_cfg) -> "CitationGraphEngine":
        return cls(
            store,
            entity_label=graph_cfg.entity_label,
            max_page_size=citation_cfg.max_page_size,
            default_page_size=citation_cfg.default_page_size,
            co_citation_limit=citation_cfg.co_citation_limit,
        )

    # ========== 实体 ==========

    def upsert_entity(self, uri: str, title: str = "") -> None:
        """索引管线在记录入库后调用，使其成为可连边的实体。"""
        _validate_uri(uri)
        self.store.upsert_node(uri, self.label, title=title or "")

    def remove_entity(self, uri: str) -> bool:
        _validate_uri(uri)
        return self.store.remove_node(uri)

    # ========== 写入 ==========

    def upsert_citations_batch(self, citations: Iterable[CitationEdge]) -> Result[int]:
        """整批一个图事务；返回实际落地的边数（跳过的不报告）。"""
        edges = list(citations)
        if not edges:
            return Result.success(0)
        for e in edges:
            _validate_uri(e.citing_uri, "citing_uri")
            _validate_uri(e.cited_uri, "cited_uri")

        now = self._clock()
        with tracer.start_as_current_span("citation.upsert_batch") as span:
            span.set_attribute("candidates", len(edges))
            tx = self.store.transaction()
            self_citations = 0
            for e in edges:
                if e.citing_uri == e.cited_uri:
                    self_citations += 1
                    continue
                tx.merge_edge(
                    e.citing_uri,
                    e.cited_uri,
                    label=self.label,
                    rel=CITES,
                    set_props={"is_influential": bool(e.is_influential), "source": e.source or "", "updated_at": now},
                    on_create={"discovered_at": now},
                )
            try:
                applied = tx.execute()
            except IndexServiceError as ex:
                logger.error("citation batch of %d failed: %s", len(edges), ex)
                return Result.failure(ex)

        skipped = len(edges) - applied
        if skipped:
            logger.debug("citation batch: %d/%d edges skipped (unknown endpoints or self-citations=%d)",
                         skipped, len(edges), self_citations)
        metrics.citation_edges_total.labels(outcome="upserted").inc(applied)
        metrics.citation_edges_total.labels(outcome="skipped").inc(skipped)
        return Result.success(applied)

    def delete_citations_for_paper(self, uri: str) -> int:
        """删除 uri 作为任一端点的所有 CITES 边；实体节点保留。"""
        _validate_uri(uri)
        removed = self.store.remove_edges(uri, CITES)
        if removed:
            logger.info("removed %d citation edges for %s", removed, uri)
        return removed

    # ========== 查询 ==========

    def _check_page(self, limit: Optional[int], offset: int) -> int:
        limit = self.default_page_size if limit is None else limit
        if not isinstance(limit, int) or not (1 <= limit <= self.max_page_size):
            raise ValidationError(f"limit must be in 1..{self.max_page_size}", field="limit")
        if not isinstance(offset, int) or offset < 0:
            raise ValidationError("offset must be >= 0", field="offset")
        return limit

    def _page(self, edges: List[CitationEdge], other, limit: int, offset: int, only_influential: bool) -> PagedCitations:
        if only_influential:
            edges = [e for e in edges if e.is_influential]
        # 稳定排序：discovered_at 降序，再按另一端 uri 升序，保证分页不重叠
        edges.sort(key=lambda e: (-(e.discovered_at or 0), other(e)))
        total = len(edges)
        page = edges[offset:offset + limit]
        return PagedCitations(citations=page, total=total, has_more=offset + len(page) < total)

    def _edge(self, citing: str, cited: str, props: dict) -> CitationEdge:
        return CitationEdge(
            citing_uri=citing,
            cited_uri=cited,
            is_influential=bool(props.get("is_influential", False)),
            source=props.get("source", ""),
            discovered_at=props.get("discovered_at"),
            updated_at=props.get("updated_at"),
        )

    def get_citing_papers(
        self, uri: str, limit: Optional[int] = None, offset: int = 0, only_influential: bool = False
    ) -> PagedCitations:
        """引用了 uri 的边（cited_uri == uri）。total 恒为全量。"""
        _validate_uri(uri)
        limit = self._check_page(limit, offset)
        edges = [self._edge(src, uri, d) for src, d in self.store.in_edges(uri, CITES)
                 if self.store.has_node(src, self.label)]
        return self._page(edges, lambda e: e.citing_uri, limit, offset, only_influential)

    def get_references(
        self, uri: str, limit: Optional[int] = None, offset: int = 0, only_influential: bool = False
    ) -> PagedCitations:
        """uri 引用的边（citing_uri == uri）。"""
        _validate_uri(uri)
        limit = self._check_page(limit, offset)
        edges = [self._edge(uri, dst, d) for dst, d in self.store.out_edges(uri, CITES)
                 if self.store.has_node(dst, self.label)]
        return self._page(edges, lambda e: e.cited_uri, limit, offset, only_influential)

    def find_co_cited_papers(
        self, uri: str, min_co_citations: int = 2, limit: Optional[int] = None
    ) -> List[CoCitationResult]:
        """
        与 uri 被同一篇论文共同引用的实体，按共同引用者数降序。
        strength = count / sqrt(cited_by(uri) * cited_by(other))（Salton 余弦）。
        """
        _validate_uri(uri)
        if not isinstance(min_co_citations, int) or min_co_citations < 1:
            raise ValidationError("min_co_citations must be >= 1", field="min_co_citations")
        limit = self.co_citation_limit if limit is None else limit
        if not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be >= 1", field="limit")

        with self.store.locked():
            if not self.store.has_node(uri, self.label):
                return []
            citers = [c for c, _ in self.store.in_edges(uri, CITES)]
            counts: Counter = Counter()
            for citer in citers:
                for other, _ in self.store.out_edges(citer, CITES):
                    if other != uri and self.store.has_node(other, self.label):
                        counts[other] += 1
            q_cited_by = len(citers)
            results = []
            for other, count in counts.items():
                if count < min_co_citations:
                    continue
                other_cited_by = len(self.store.in_edges(other, CITES))
                denom = q_cited_by * other_cited_by
                strength = count / math.sqrt(denom) if denom else 0.0
                title = self.store.node_props(other).get("title", "")
                results.append(CoCitationResult(other, count, strength, title))

        results.sort(key=lambda r: (-r.co_citation_count, -r.strength, r.uri))
        return results[:limit]

    def get_citation_counts(self, uri: str) -> CitationCounts:
        _validate_uri(uri)
        with self.store.locked():
            cited_by = self.store.in_edges(uri, CITES)
            refs = self.store.out_edges(uri, CITES)
        return CitationCounts(
            cited_by=len(cited_by),
            references=len(refs),
            influential_cited_by=sum(1 for _, d in cited_by if d.get("is_influential")),
        )
