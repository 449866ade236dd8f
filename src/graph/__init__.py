# 引用图谱模块
from src.graph.citation_graph import CitationGraphEngine
from src.graph.graph_store import GraphTransaction, NetworkxGraphStore
from src.graph.models import CitationCounts, CitationEdge, CoCitationResult, PagedCitations

__all__ = [
    "CitationCounts",
    "CitationEdge",
    "CitationGraphEngine",
    "CoCitationResult",
    "GraphTransaction",
    "NetworkxGraphStore",
    "PagedCitations",
]
