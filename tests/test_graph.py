from __future__ import annotations

from gardengen.config import SiteConfig
from gardengen.document import Link, document_from_text
from gardengen.errors import BuildReport
from gardengen.explorer import build_explorer
from gardengen.filters import RemoveDrafts
from gardengen.graph import AMBIGUOUS, BROKEN, LinkResolver, build_graph, temporal_order
from gardengen.pipeline import Pipeline
from gardengen.transformers import CrawlLinks, FrontMatter, GitHubFlavoredMarkdown, ObsidianFlavoredMarkdown

from conftest import make_doc, utc


def test_drafts_scenario(ctx):
    pipeline = Pipeline(
        [FrontMatter(), ObsidianFlavoredMarkdown(), GitHubFlavoredMarkdown(), CrawlLinks()],
        [RemoveDrafts()],
        [],
    )
    report = BuildReport()
    documents = [
        document_from_text("a.md", "Links to [[b]]."),
        document_from_text("b.md", "Plain."),
        document_from_text("c.md", "---\ndraft: true\n---\nLinks to [[a]] and [[b]]."),
    ]
    documents = pipeline.filter(pipeline.transform(documents, ctx, report), ctx, report)
    graph = build_graph(documents, build_explorer(documents))

    assert sorted(graph.documents) == ["a", "b"]
    assert graph.links_from("a") == ["b"]
    assert graph.backlinks_of("b") == ["a"]
    assert graph.backlinks_of("a") == []
    assert "c" not in graph.timeline
    assert report.excluded == ["c"]
    assert not report.document_errors


def test_backlinks_are_the_transpose_of_forward_links():
    docs = [
        make_doc("a.md", links=("b", "c", "missing")),
        make_doc("b.md", links=("a", "c")),
        make_doc("c.md", links=("c",)),
        make_doc("d.md"),
    ]
    graph = build_graph(docs)
    slugs = list(graph.documents)
    for source in slugs:
        for target in slugs:
            forward = target in graph.links_from(source)
            backward = source in graph.backlinks_of(target)
            assert forward == backward
    for sources in graph.backlinks.values():
        assert sources == sorted(sources)


def test_dangling_links_are_reported_not_linked():
    graph = build_graph([make_doc("a.md", links=("nowhere",))])
    assert graph.links_from("a") == []
    assert graph.backlinks == {}
    assert [(issue.source, issue.target, issue.kind) for issue in graph.issues] == [("a", "nowhere", BROKEN)]


def test_no_edges_to_excluded_documents():
    kept = [make_doc("a.md", links=("b", "c")), make_doc("b.md")]
    graph = build_graph(kept)
    targets = {target for targets in graph.forward.values() for target in targets}
    assert targets <= set(graph.documents)
    assert graph.issues[0].target == "c"


class TestResolution:
    docs = [
        make_doc("notes/a.md"),
        make_doc("notes/b.md"),
        make_doc("other/b.md"),
        make_doc("d.md"),
        make_doc("topics/index.md"),
    ]

    def resolver(self, policy):
        return LinkResolver([doc.slug for doc in self.docs], policy)

    def test_shortest_unique_name(self):
        source = make_doc("notes/a.md")
        assert self.resolver("shortest").resolve(source, "d") == ("d", ())

    def test_shortest_ambiguous_prefers_exact_candidate(self):
        source = make_doc("notes/a.md")
        assert self.resolver("shortest").resolve(source, "b") == ("notes/b", ())

    def test_shortest_ambiguous_without_exact_candidate(self):
        source = make_doc("d.md")
        assert self.resolver("shortest").resolve(source, "b") == (None, ("notes/b", "other/b"))

    def test_shortest_path_root_then_relative(self):
        source = make_doc("notes/a.md")
        resolver = self.resolver("shortest")
        assert resolver.resolve(source, "other/b") == ("other/b", ())
        assert resolver.resolve(source, "../other/b") == ("other/b", ())

    def test_exact_is_relative_to_source_folder(self):
        source = make_doc("notes/a.md")
        resolver = self.resolver("exact")
        assert resolver.resolve(source, "d") == (None, ())
        assert resolver.resolve(source, "/d") == ("d", ())
        assert resolver.resolve(source, "b") == ("notes/b", ())

    def test_folder_targets_resolve_to_index(self):
        source = make_doc("d.md")
        assert self.resolver("exact").resolve(source, "/topics") == ("topics/index", ())
        assert self.resolver("shortest").resolve(source, "topics") == ("topics/index", ())

    def test_cannot_escape_root(self):
        assert self.resolver("exact").resolve(make_doc("d.md"), "../d") == (None, ())

    def test_ambiguous_issue_in_graph(self):
        graph = build_graph(self.docs + [make_doc("root.md", links=("b",))])
        issue = graph.issues[0]
        assert issue.kind == AMBIGUOUS
        assert issue.candidates == ("notes/b", "other/b")


def test_temporal_order_newest_first_ties_by_slug_undated_last():
    docs = [
        make_doc("z.md"),
        make_doc("b.md", date=utc(2024, 1, 1)),
        make_doc("a.md", date=utc(2024, 1, 1)),
        make_doc("c.md", date=utc(2024, 6, 1)),
        make_doc("y.md"),
    ]
    assert [doc.slug for doc in temporal_order(docs, "modified")] == ["c", "a", "b", "y", "z"]
    assert build_graph(docs).timeline == ["c", "a", "b", "y", "z"]


def test_tag_groups_include_parent_tags():
    docs = [
        make_doc("a.md", tags=["project/alpha"], date=utc(2024, 1, 1)),
        make_doc("b.md", tags=["project"], date=utc(2024, 2, 1)),
    ]
    graph = build_graph(docs)
    assert graph.tags["project"] == ["b", "a"]
    assert graph.tags["project/alpha"] == ["a"]


def test_tag_order_can_be_supplied():
    docs = [make_doc("a.md", tags=["t"], date=utc(2024, 1, 1)), make_doc("b.md", tags=["t"])]
    graph = build_graph(docs, tag_order=lambda doc: doc.slug)
    assert graph.tags["t"] == ["a", "b"]


def test_folder_groups_follow_explorer_order(ctx):
    docs = [
        make_doc("notes/b.md"),
        make_doc("notes/a.md"),
        make_doc("notes/draft.md", draft=True),
        make_doc("top.md"),
        make_doc("index.md"),
        make_doc("hidden.md", draft=True),
    ]
    kept = [doc for doc in docs if RemoveDrafts().include(doc, ctx)]
    graph = build_graph(kept, build_explorer(kept))
    assert graph.folders == {"": ["top"], "notes": ["notes/a", "notes/b"]}


class TestAliases:
    def test_first_document_claims_an_alias(self):
        docs = [make_doc("b.md", aliases=["old"]), make_doc("a.md", aliases=["old", "a"])]
        graph = build_graph(docs)
        assert graph.aliases == {"old": "a"}
        assert [(error.path, error.stage) for error in graph.conflicts] == [("b.md", "graph")]

    def test_page_slugs_beat_aliases(self):
        graph = build_graph([make_doc("a.md", aliases=["b", "c"]), make_doc("b.md")])
        assert graph.aliases == {"c": "a"}
        assert "already used by b" in graph.conflicts[0].message


def test_tag_slugs_are_distinct_and_avoid_the_index():
    docs = [make_doc("a.md", tags=["index", "a b", "a-b", "x/index"])]
    graph = build_graph(docs)
    assert graph.tag_slug("index") == "index-2"
    assert graph.tag_slug("a b") == "a-b"
    assert graph.tag_slug("a-b") == "a-b-2"
    assert graph.tag_slug("x/index") == "x/index"
    assert len(set(graph.tag_slugs.values())) == len(graph.tags)


class TestAssetLinks:
    assets = ["img/pic.png", "notes/pic.png", "files/doc.pdf"]

    def doc(self, *targets):
        doc = make_doc("notes/one.md")
        return doc.evolve(links=tuple(Link(target, asset=True) for target in targets))

    def test_shortest_prefers_the_local_copy_of_a_shared_name(self):
        graph = build_graph([self.doc("pic.png", "doc.pdf")], assets=self.assets)
        assert graph.resolve_asset("notes/one", "pic.png") == "notes/pic.png"
        assert graph.resolve_asset("notes/one", "doc.pdf") == "files/doc.pdf"
        assert graph.issues == []

    def test_exact_only_looks_beside_the_note(self):
        graph = build_graph([self.doc("doc.pdf", "/img/pic.png")], resolution="exact", assets=self.assets)
        assert graph.resolve_asset("notes/one", "/img/pic.png") == "img/pic.png"
        assert [(issue.target, issue.kind) for issue in graph.issues] == [("doc.pdf", BROKEN)]

    def test_asset_links_are_not_page_edges(self):
        graph = build_graph([self.doc("pic.png")], assets=self.assets)
        assert graph.links_from("notes/one") == []
        assert graph.backlinks == {}


def test_effective_date_uses_configured_type():
    created = make_doc("a.md").with_meta(dates={"created": utc(2020, 1, 1), "modified": utc(2024, 1, 1)})
    assert build_graph([created], date_type="created").effective_date("a") == utc(2020, 1, 1)
    assert build_graph([created]).effective_date("a") == utc(2024, 1, 1)


def test_graph_is_deterministic():
    docs = [make_doc("a.md", links=("b",)), make_doc("b.md", links=("a",)), make_doc("c.md", links=("a",))]
    first = build_graph(docs)
    second = build_graph(list(reversed(docs)))
    assert first.forward == second.forward
    assert first.backlinks == second.backlinks
    assert first.timeline == second.timeline


def test_site_config_default_policy_is_shortest():
    assert SiteConfig().link_resolution == "shortest"
