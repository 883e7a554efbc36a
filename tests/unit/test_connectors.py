"""Unit tests for source connectors, rate limiting and de-duplication."""

import json
from datetime import date

import httpx
import pytest

from conftest import FakeConnector
from research_pipeline.connectors.base import RateLimiter, SearchOptions
from research_pipeline.connectors.clinical_trials import ClinicalTrialsConnector
from research_pipeline.connectors.dedup import dedupe_items, normalize_title, titles_match
from research_pipeline.connectors.pmc import PmcClient, parse_full_text
from research_pipeline.connectors.pubmed import PubMedConnector, parse_articles
from research_pipeline.connectors.registry import ConnectorSet
from research_pipeline.connectors.semantic_scholar import SemanticScholarConnector
from research_pipeline.errors import ConnectorError

EFETCH_XML = """<?xml version="1.0"?>
<PubmedArticleSet>
  <PubmedArticle>
    <MedlineCitation>
      <PMID>38000001</PMID>
      <Article>
        <Journal>
          <Title>Obesity Surgery</Title>
          <JournalIssue><PubDate><Year>2025</Year><Month>Mar</Month><Day>4</Day></PubDate></JournalIssue>
        </Journal>
        <ArticleTitle>Lean mass after <i>sleeve</i> gastroplasty</ArticleTitle>
        <Abstract>
          <AbstractText Label="BACKGROUND">Muscle loss is common.</AbstractText>
          <AbstractText Label="RESULTS">Lean mass fell 8%.</AbstractText>
        </Abstract>
        <AuthorList>
          <Author><LastName>Yilmaz</LastName><ForeName>Ayse</ForeName></Author>
        </AuthorList>
        <PublicationTypeList><PublicationType>Journal Article</PublicationType></PublicationTypeList>
      </Article>
      <MeshHeadingList>
        <MeshHeading><DescriptorName>Obesity</DescriptorName></MeshHeading>
      </MeshHeadingList>
    </MedlineCitation>
    <PubmedData>
      <ArticleIdList><ArticleId IdType="doi">10.1000/xyz</ArticleId></ArticleIdList>
    </PubmedData>
  </PubmedArticle>
</PubmedArticleSet>
"""


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestPubMed:
    def test_parse_articles(self):
        items = parse_articles(EFETCH_XML)
        assert len(items) == 1
        item = items[0]
        assert item.source_id.external_id == "38000001"
        assert item.title == "Lean mass after sleeve gastroplasty"
        assert item.body == "Muscle loss is common. Lean mass fell 8%."
        assert item.published_at == date(2025, 3, 4)
        assert item.authors == ["Ayse Yilmaz"]
        assert item.extra["doi"] == "10.1000/xyz"
        assert item.tags == ["Obesity"]

    def test_invalid_xml(self):
        with pytest.raises(ConnectorError):
            parse_articles("<not-closed>")

    def test_search_runs_esearch_then_efetch(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("esearch.fcgi"):
                return httpx.Response(200, json={"esearchresult": {"idlist": ["38000001"]}})
            return httpx.Response(200, text=EFETCH_XML)

        connector = PubMedConnector(client=_client(handler), min_interval=0, api_key="key")
        items = connector.search("myostatin", SearchOptions(max_results=5, min_date=date(2025, 1, 1), sort_by="date"))

        assert [i.source_id.external_id for i in items] == ["38000001"]
        esearch = requests[0].url.params
        assert "myostatin" in esearch["term"]
        assert "Review[pt]" in esearch["term"]
        assert esearch["mindate"] == "2025/01/01"
        assert esearch["sort"] == "pub_date"
        assert esearch["api_key"] == "key"
        assert requests[1].url.params["id"] == "38000001"

    def test_no_ids_skips_efetch(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"esearchresult": {"idlist": []}})

        connector = PubMedConnector(client=_client(handler), min_interval=0)
        assert connector.search("nothing", SearchOptions()) == []
        assert len(calls) == 1

    def test_http_error_becomes_connector_error(self):
        connector = PubMedConnector(client=_client(lambda r: httpx.Response(429)), min_interval=0)
        with pytest.raises(ConnectorError) as exc:
            connector.search("q", SearchOptions())
        assert exc.value.provider == "pubmed"
        assert "429" in exc.value.message

    def test_timeout_becomes_connector_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        connector = PubMedConnector(client=_client(handler), min_interval=0)
        with pytest.raises(ConnectorError):
            connector.search("q", SearchOptions())


PMC_XML = """<?xml version="1.0"?>
<pmc-articleset>
  <article>
    <front><article-meta><title-group><article-title>Lean mass</article-title></title-group></article-meta></front>
    <body>
      <sec>
        <title>Methods</title>
        <p>Adults after <italic>sleeve</italic> gastrectomy.</p>
        <sec>
          <title>Outcomes</title>
          <p>DXA lean mass at 12 months.</p>
        </sec>
      </sec>
      <sec>
        <p>Lean mass fell 8%.</p>
      </sec>
    </body>
  </article>
</pmc-articleset>
"""


class TestPmc:
    def test_parse_nested_sections(self):
        sections = parse_full_text(PMC_XML)
        assert [s.title for s in sections] == ["Methods", "Untitled Section"]
        assert sections[0].text == "Adults after sleeve gastrectomy.\n\n### Outcomes\nDXA lean mass at 12 months."
        assert sections[1].text == "Lean mass fell 8%."

    def test_parse_without_body(self):
        assert parse_full_text("<pmc-articleset><article><front/></article></pmc-articleset>") == []

    def test_parse_invalid_xml(self):
        with pytest.raises(ConnectorError) as exc:
            parse_full_text("<pmc-articleset>")
        assert exc.value.provider == "pmc"

    def test_fetch_links_then_fetches_body(self, make_item):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("elink.fcgi"):
                return httpx.Response(200, json={"linksets": [{"linksetdbs": [
                    {"dbto": "pubmed", "links": ["1"]},
                    {"dbto": "pmc", "links": ["123"]},
                ]}]})
            return httpx.Response(200, text=PMC_XML)

        item = make_item("Lean mass after sleeve", external_id="38000001")
        full_text = PmcClient(client=_client(handler), min_interval=0, api_key="key").fetch(item)

        assert full_text.item_id == item.id
        assert full_text.pmcid == "PMC123"
        assert len(full_text.sections) == 2
        assert requests[0].url.params["id"] == "38000001"
        assert requests[0].url.params["api_key"] == "key"
        assert requests[1].url.params["db"] == "pmc"
        assert requests[1].url.params["id"] == "123"

    def test_no_open_access_copy(self, make_item):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"linksets": [{"dbfrom": "pubmed"}]})

        client = PmcClient(client=_client(handler), min_interval=0)
        assert client.fetch(make_item("Lean mass", external_id="38000001")) is None
        assert len(calls) == 1

    def test_other_providers_skipped(self, make_item):
        calls = []
        client = PmcClient(client=_client(lambda r: calls.append(r) or httpx.Response(500)), min_interval=0)
        assert client.fetch(make_item("Video models", provider="semantic_scholar", external_id="s-1")) is None
        assert calls == []

    def test_http_error_becomes_connector_error(self, make_item):
        client = PmcClient(client=_client(lambda r: httpx.Response(503)), min_interval=0)
        with pytest.raises(ConnectorError) as exc:
            client.fetch(make_item("Lean mass", external_id="38000001"))
        assert exc.value.provider == "pmc"


class TestSemanticScholar:
    def test_search_normalizes_and_sorts(self):
        payload = {"data": [
            {"paperId": "a", "title": "Older", "year": 2020, "citationCount": 3},
            {"paperId": "b", "title": "Newer", "publicationDate": "2025-02-01",
             "authors": [{"name": "A. Author"}], "journal": {"name": "Nature"}},
            {"paperId": None, "title": "No id"},
        ]}
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json=payload)

        connector = SemanticScholarConnector(client=_client(handler), min_interval=0)
        items = connector.search("q", SearchOptions(max_results=10, min_date=date(2019, 1, 1), sort_by="date"))

        assert [i.title for i in items] == ["Newer", "Older"]
        assert items[0].venue == "Nature"
        assert items[1].citation_count == 3
        assert seen["publicationDateOrYear"] == "2019-01-01:"

    def test_invalid_json(self):
        connector = SemanticScholarConnector(
            client=_client(lambda r: httpx.Response(200, text="<html>")), min_interval=0
        )
        with pytest.raises(ConnectorError):
            connector.search("q", SearchOptions())


class TestClinicalTrials:
    def test_search(self):
        study = {"protocolSection": {
            "identificationModule": {"nctId": "NCT01234567", "briefTitle": "GLP-1 and muscle"},
            "statusModule": {"overallStatus": "RECRUITING", "startDateStruct": {"date": "2024-06"}},
            "descriptionModule": {"briefSummary": "Summary"},
            "conditionsModule": {"conditions": ["Obesity"]},
            "designModule": {"phases": ["PHASE2"]},
        }}
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json={"studies": [study]})

        connector = ClinicalTrialsConnector(client=_client(handler))
        items = connector.search("glp-1", SearchOptions(min_date=date(2025, 1, 1), sort_by="date"))

        assert items[0].source_id.external_id == "NCT01234567"
        assert items[0].published_at == date(2024, 6, 1)
        assert items[0].extra["phase"] == "PHASE2"
        assert seen["query.term"] == "glp-1"
        assert "2025-01-01" in seen["filter.advanced"]


class TestRateLimiter:
    def test_waits_for_min_interval(self):
        now = [100.0]
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        limiter = RateLimiter(1.0, clock=lambda: now[0], sleep=sleep)
        limiter.wait()
        now[0] += 0.25
        limiter.wait()
        assert sleeps == [0.75]

    def test_no_wait_after_interval(self):
        now = [0.0]
        sleeps = []
        limiter = RateLimiter(0.5, clock=lambda: now[0], sleep=sleeps.append)
        limiter.wait()
        now[0] += 2
        limiter.wait()
        assert sleeps == []


class TestDedup:
    def test_normalize_title(self):
        assert normalize_title("Lean-Mass, After GLP-1!") == "leanmassafterglp1"
        assert len(normalize_title("x" * 300)) == 100

    def test_normalize_keeps_non_latin_scripts(self):
        assert normalize_title("Müller-Lyer Illusion") == "mullerlyerillusion"
        assert normalize_title("肥満手術後の筋肉量") == "肥満手術後の筋肉量"
        assert normalize_title("Саркопения после бариатрической хирургии") != ""

    def test_non_latin_titles_deduplicate(self, make_item):
        title = "Саркопения после бариатрической хирургии"
        a = make_item(title, external_id="1")
        b = make_item(title + ".", provider="semantic_scholar", external_id="s")
        assert len(dedupe_items([a, b])) == 1

    def test_titles_match(self):
        long_a = normalize_title("Myostatin inhibition preserves lean mass in adults")
        long_b = normalize_title("Myostatin inhibition preserves lean mass in adult")
        assert titles_match(long_a, long_b)
        assert not titles_match("glp1", "glp2")
        assert not titles_match("", "")

    def test_keeps_richer_item_in_first_position(self, make_item):
        sparse = make_item("Myostatin and lean mass", external_id="1", body="")
        other = make_item("Unrelated trial", external_id="2")
        rich = make_item("Myostatin and Lean Mass", provider="semantic_scholar", external_id="s", body="Long abstract")
        result = dedupe_items([sparse, other, rich])
        assert [i.title for i in result] == ["Myostatin and Lean Mass", "Unrelated trial"]

    def test_same_external_id_is_duplicate(self, make_item):
        a = make_item("Title one", external_id="9")
        b = make_item("Title two", external_id="9")
        assert len(dedupe_items([a, b])) == 1


class TestConnectorSet:
    def test_partial_failure(self, sample_items):
        connectors = ConnectorSet([
            FakeConnector("pubmed", sample_items[:1]),
            FakeConnector("semantic_scholar", error="HTTP 500"),
        ])
        outcome = connectors.search("q", SearchOptions())
        assert [i.title for i in outcome.items] == [sample_items[0].title]
        assert [e.provider for e in outcome.errors] == ["semantic_scholar"]

    def test_unexpected_exception_wrapped(self, sample_items):
        class Broken:
            name = "broken"

            def search(self, query, options):
                raise KeyError("data")

        outcome = ConnectorSet([Broken()]).search("q", SearchOptions())
        assert outcome.items == []
        assert outcome.errors[0].provider == "broken"

    def test_provider_filter_and_unknown(self, sample_items):
        pubmed = FakeConnector("pubmed", sample_items[:1])
        scholar = FakeConnector("semantic_scholar", sample_items[1:])
        outcome = ConnectorSet([pubmed, scholar]).search("q", SearchOptions(), providers=["pubmed", "arxiv"])
        assert outcome.providers_queried == ["pubmed"]
        assert scholar.queries == []

    def test_duplicates_across_providers_merged(self, make_item):
        title = "Endoscopic sleeve gastroplasty outcomes at five years"
        connectors = ConnectorSet([
            FakeConnector("pubmed", [make_item(title, external_id="1", body="short")]),
            FakeConnector("semantic_scholar", [make_item(title, provider="semantic_scholar", external_id="x",
                                                         body="a much longer abstract")]),
        ])
        outcome = connectors.search("q", SearchOptions())
        assert outcome.total_before_dedup == 2
        assert len(outcome.items) == 1
        assert outcome.items[0].body == "a much longer abstract"


def test_esearch_payload_shape_checked():
    connector = PubMedConnector(client=_client(lambda r: httpx.Response(200, text=json.dumps([1]))), min_interval=0)
    with pytest.raises(ConnectorError):
        connector.search("q", SearchOptions())
