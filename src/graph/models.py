from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class CitationEdge:
    """(citing_uri, cited_uri) 唯一标识一条边。discovered_at 只在首次创建时写入。"""

    citing_uri: str
    cited_uri: str
    is_influential: bool = False
    source: str = ""
    discovered_at: Optional[int] = None
    updated_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "citingUri": self.citing_uri,
            "citedUri": self.cited_uri,
            "isInfluential": self.is_influential,
            "source": self.source,
            "discoveredAt": self.discovered_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class PagedCitations:
    citations: List[CitationEdge] = field(default_factory=list)
    total: int = 0
    has_more: bool = False


@dataclass(frozen=True)
class CoCitationResult:
    uri: str
    co_citation_count: int
    strength: float
    title: str = ""


@dataclass(frozen=True)
class CitationCounts:
    cited_by: int = 0
    references: int = 0
    influential_cited_by: int = 0
