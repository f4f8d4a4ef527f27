import pytest
from bs4 import BeautifulSoup

from links import (
    build_search_url,
    find_job_links,
    find_next_page,
    normalize_url,
    slugify,
    synthesize_next_page,
    to_absolute,
)

BASE = "https://www.infojobs.net/jobsearch/search-results/list.xhtml?keyword=python"


@pytest.mark.parametrize(
    "url",
    [
        "HTTPS://WWW.InfoJobs.net:443/madrid/dev/of-iabc123?utm_source=x&b=2&a=1#top",
        "https://www.infojobs.net/madrid/dev/of-iabc123;jsessionid=DEADBEEF?page=2",
        "http://example.com:8080/path?q=caf%C3%A9&sid=123",
        "https://example.com",
    ],
)
def test_normalize_is_idempotent(url):
    once = normalize_url(url)
    assert normalize_url(once) == once


def test_normalize_strips_volatile_parts():
    url = "HTTPS://WWW.InfoJobs.net:443/madrid/dev/of-iabc123;jsessionid=XYZ?utm_campaign=a&gclid=1&b=2&a=1#frag"
    assert normalize_url(url) == "https://www.infojobs.net/madrid/dev/of-iabc123?a=1&b=2"


def test_normalize_keeps_non_default_port():
    assert normalize_url("http://Example.com:8080/x") == "http://example.com:8080/x"


@pytest.mark.parametrize("href", ["", "#", "#section", "javascript:void(0)", "mailto:a@b.c", "tel:123"])
def test_to_absolute_rejects_non_navigable(href):
    assert to_absolute(href, BASE) is None


def test_to_absolute_resolves_relative():
    assert to_absolute("/madrid/dev/of-i1", BASE) == "https://www.infojobs.net/madrid/dev/of-i1"


def test_find_job_links_headlines_first_and_deduped():
    html = """
    <div>
      <a href="/barcelona/qa/of-izzz999">QA sidebar</a>
      <h2><a href="/madrid/dev/of-iabc123?utm_source=list">Dev</a></h2>
      <h2><a href="https://www.infojobs.net/valencia/ops/of-idef456">Ops</a></h2>
      <a href="/madrid/dev/of-iabc123">Dev again</a>
      <a href="/empresa-acme">Company</a>
    </div>
    """
    links = find_job_links(BeautifulSoup(html, "html.parser"), BASE)
    assert links == [
        "https://www.infojobs.net/madrid/dev/of-iabc123",
        "https://www.infojobs.net/valencia/ops/of-idef456",
        "https://www.infojobs.net/barcelona/qa/of-izzz999",
    ]


def test_synthesize_next_page_increments_page_only():
    url = "https://www.infojobs.net/list.xhtml?keyword=python&page=3&sortBy=PUBLICATION_DATE"
    assert synthesize_next_page(url) == (
        "https://www.infojobs.net/list.xhtml?keyword=python&page=4&sortBy=PUBLICATION_DATE"
    )


def test_synthesize_next_page_missing_param_means_page_one():
    assert synthesize_next_page("https://example.com/jobs?q=x") == "https://example.com/jobs?q=x&page=2"


def test_find_next_page_prefers_explicit_link():
    html = '<nav><a aria-label="Página siguiente" href="/list.xhtml?keyword=python&page=2">›</a></nav>'
    soup = BeautifulSoup(html, "html.parser")
    assert find_next_page(soup, BASE) == "https://www.infojobs.net/list.xhtml?keyword=python&page=2"


def test_find_next_page_ignores_disabled_control():
    html = '<a class="pager-next disabled" href="/list.xhtml?page=9">Siguiente</a>'
    soup = BeautifulSoup(html, "html.parser")
    assert find_next_page(soup, BASE + "&page=3") == (
        "https://www.infojobs.net/jobsearch/search-results/list.xhtml?keyword=python&page=4"
    )


def test_find_next_page_does_not_mistake_job_title_for_pager():
    html = '<a href="/madrid/next/of-i123">Next.js Developer</a>'
    soup = BeautifulSoup(html, "html.parser")
    assert find_next_page(soup, BASE).endswith("keyword=python&page=2")


def test_slugify():
    assert slugify("  Analista de Datos / BI  ") == "analista-de-datos-bi"
    assert slugify("Córdoba") == "cordoba"
    assert slugify("") == ""


def test_build_search_url_sorted_by_publication_date():
    url = build_search_url("https://www.infojobs.net/", "/jobsearch/search-results/list.xhtml",
                           keyword="data engineer", location="33", category="informatica-telecomunicaciones")
    assert url == (
        "https://www.infojobs.net/jobsearch/search-results/list.xhtml"
        "?keyword=data+engineer&provinceIds=33&category=informatica-telecomunicaciones"
        "&sortBy=PUBLICATION_DATE"
    )
