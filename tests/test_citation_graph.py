"""
Citation Graph：幂等 upsert、闭世界跳过、分页、共被引、删除与 JSON 落盘。
"""

import pytest

from conftest import eprint_uri
from src.core.errors import ValidationError
from src.graph import CitationEdge, CitationGraphEngine, NetworkxGraphStore

A, B, C, D, X = (eprint_uri(k) for k in ("a", "b", "c", "d", "x"))


@pytest.fixture
def seeded(citation_engine):
    for uri, title in ((A, "Paper A"), (B, "Paper B"), (C, "Paper C"), (D, "Paper D")):
        citation_engine.upsert_entity(uri, title)
    return citation_engine


def test_upsert_is_idempotent_and_keeps_discovered_at(seeded, graph_store, clock):
    assert seeded.upsert_citations_batch([CitationEdge(A, B, source="semantic-scholar")]).value == 1
    first = graph_store.edge(A, B)

    clock.advance(5000)
    assert seeded.upsert_citations_batch([CitationEdge(A, B, is_influential=True, source="openalex")]).value == 1
    second = graph_store.edge(A, B)

    assert graph_store.stats()["edges"] == 1
    assert second["discovered_at"] == first["discovered_at"] == clock.now - 5000
    assert second["updated_at"] == clock.now
    assert second["is_influential"] is True
    assert second["source"] == "openalex"


def test_unknown_endpoints_and_self_citations_are_skipped(seeded, graph_store):
    res = seeded.upsert_citations_batch([
        CitationEdge(A, B),
        CitationEdge(A, X),
        CitationEdge(X, A),
        CitationEdge(C, C),
    ])
    assert res.ok
    assert res.value == 1
    assert graph_store.stats()["edges"] == 1
    assert not graph_store.has_node(X)


def test_empty_batch_and_validation(seeded):
    assert seeded.upsert_citations_batch([]).value == 0
    with pytest.raises(ValidationError):
        seeded.upsert_citations_batch([CitationEdge(A, "not a uri")])


def test_citing_papers_and_references(seeded, clock):
    seeded.upsert_citations_batch([CitationEdge(B, A), CitationEdge(C, A, is_influential=True)])
    clock.advance(1000)
    seeded.upsert_citations_batch([CitationEdge(D, A)])

    citing = seeded.get_citing_papers(A)
    assert [e.citing_uri for e in citing.citations] == [D, B, C]
    assert citing.total == 3 and not citing.has_more

    influential = seeded.get_citing_papers(A, only_influential=True)
    assert [e.citing_uri for e in influential.citations] == [C]
    assert influential.total == 1

    refs = seeded.get_references(B)
    assert [e.cited_uri for e in refs.citations] == [A]
    assert seeded.get_references(A).total == 0


def test_pagination_is_disjoint_and_complete(seeded):
    targets = [eprint_uri(f"t{i:02d}") for i in range(7)]
    for t in targets:
        seeded.upsert_entity(t)
    seeded.upsert_citations_batch([CitationEdge(A, t) for t in targets])

    seen = []
    offset = 0
    while True:
        page = seeded.get_references(A, limit=3, offset=offset)
        assert page.total == 7
        seen.extend(e.cited_uri for e in page.citations)
        offset += 3
        if not page.has_more:
            break
    assert seen == sorted(targets)
    assert len(set(seen)) == 7


def test_pagination_validation(seeded):
    with pytest.raises(ValidationError):
        seeded.get_citing_papers(A, limit=0)
    with pytest.raises(ValidationError):
        seeded.get_citing_papers(A, limit=1001)
    with pytest.raises(ValidationError):
        seeded.get_references(A, offset=-1)


def test_co_citation(seeded):
    # C 和 D 都同时引用了 A 与 B；只有 C 引用了 D
    seeded.upsert_citations_batch([
        CitationEdge(C, A), CitationEdge(C, B),
        CitationEdge(D, A), CitationEdge(D, B),
        CitationEdge(C, D),
    ])
    results = seeded.find_co_cited_papers(A)
    assert [r.uri for r in results] == [B]
    r = results[0]
    assert r.co_citation_count == 2
    assert r.strength == pytest.approx(1.0)
    assert r.title == "Paper B"

    assert seeded.find_co_cited_papers(A, min_co_citations=1)[0].uri == B
    assert {r.uri for r in seeded.find_co_cited_papers(A, min_co_citations=1)} == {B, D}
    assert seeded.find_co_cited_papers(X) == []


def test_co_citation_validation(seeded):
    with pytest.raises(ValidationError):
        seeded.find_co_cited_papers(A, min_co_citations=0)


def test_delete_citations_for_paper(seeded, graph_store):
    seeded.upsert_citations_batch([CitationEdge(A, B), CitationEdge(C, A), CitationEdge(C, B)])
    assert seeded.delete_citations_for_paper(A) == 2
    assert graph_store.has_node(A, "Eprint")
    assert seeded.get_citation_counts(A).cited_by == 0
    assert seeded.get_citation_counts(C).references == 1
    assert seeded.delete_citations_for_paper(A) == 0


def test_citation_counts(seeded):
    seeded.upsert_citations_batch([
        CitationEdge(B, A, is_influential=True),
        CitationEdge(C, A),
        CitationEdge(A, D),
    ])
    counts = seeded.get_citation_counts(A)
    assert (counts.cited_by, counts.references, counts.influential_cited_by) == (2, 1, 1)


def test_graph_persists_to_json(tmp_path, clock):
    path = tmp_path / "citations.json"
    store = NetworkxGraphStore(path)
    engine = CitationGraphEngine(store, clock=clock)
    engine.upsert_entity(A, "Paper A")
    engine.upsert_entity(B)
    engine.upsert_citations_batch([CitationEdge(A, B, is_influential=True)])
    store.save()

    reloaded = CitationGraphEngine(NetworkxGraphStore(path), clock=clock)
    refs = reloaded.get_references(A)
    assert [e.cited_uri for e in refs.citations] == [B]
    assert refs.citations[0].is_influential
    assert refs.citations[0].discovered_at == clock.now


def test_save_writes_a_snapshot_taken_under_the_lock(tmp_path, monkeypatch):
    import builtins

    from src.graph import graph_store as graph_store_module

    path = tmp_path / "citations.json"
    store = NetworkxGraphStore(path)
    store.upsert_node(A, "Eprint", title="before")

    class _MutatingWriter:
        """写文件时并发修改节点属性。"""

        def __init__(self, f):
            self._f = f

        def write(self, s):
            store.upsert_node(A, "Eprint", title="after")
            return self._f.write(s)

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return self._f.__exit__(*exc)

    monkeypatch.setattr(
        graph_store_module, "open",
        lambda *a, **kw: _MutatingWriter(builtins.open(*a, **kw)),
        raising=False,
    )
    store.save()
    monkeypatch.undo()

    assert store.node_props(A)["title"] == "after"
    assert NetworkxGraphStore(path).node_props(A)["title"] == "before"
