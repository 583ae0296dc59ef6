from __future__ import annotations

from linksweep.links import extract_fragment_ids, extract_links, is_html, resolve_link


def _urls(html: str, base: str = "https://example.com/docs/page.html") -> list:
    return [link.url for link in extract_links(html, base)]


def test_extracts_urls_from_known_attributes_in_document_order() -> None:
    html = """
    <html><head>
      <link rel="stylesheet" href="/style.css">
      <script src="app.js"></script>
    </head>
    <body background="bg.png">
      <a href="other.html">Other</a>
      <img src="logo.png" srcset="small.png 1x, large.png 2x" longdesc="desc.html">
      <video poster="poster.jpg" src="movie.mp4"></video>
      <blockquote cite="https://quotes.example.org/1"></blockquote>
      <object data="embed.swf"></object>
      <iframe src="https://frame.example.net/"></iframe>
    </body></html>
    """
    urls = _urls(html)

    assert urls == [
        "https://example.com/style.css",
        "https://example.com/docs/app.js",
        "https://example.com/docs/bg.png",
        "https://example.com/docs/other.html",
        "https://example.com/docs/desc.html",
        "https://example.com/docs/logo.png",
        "https://example.com/docs/small.png",
        "https://example.com/docs/large.png",
        "https://example.com/docs/poster.jpg",
        "https://example.com/docs/movie.mp4",
        "https://quotes.example.org/1",
        "https://example.com/docs/embed.swf",
        "https://frame.example.net/",
    ]


def test_skips_resource_hints_and_empty_values() -> None:
    html = """
    <link rel="preconnect" href="https://fonts.example.com">
    <link rel="dns-prefetch" href="https://cdn.example.com">
    <a href="">empty</a>
    <a href="   ">blank</a>
    <a>no href</a>
    <a href="real.html">real</a>
    """
    assert _urls(html) == ["https://example.com/docs/real.html"]


def test_meta_urls_and_refresh() -> None:
    html = """
    <meta property="og:image" content="https://img.example.com/card.png">
    <meta name="description" content="Not a link">
    <meta http-equiv="refresh" content="0; url=/moved.html">
    """
    assert _urls(html) == [
        "https://img.example.com/card.png",
        "https://example.com/moved.html",
    ]


def test_base_href_overrides_page_url() -> None:
    html = '<base href="https://cdn.example.com/assets/"><a href="x.html">x</a>'
    assert _urls(html) == ["https://cdn.example.com/assets/x.html"]


def test_extensionless_page_is_treated_as_directory() -> None:
    urls = _urls('<a href="intro.html">intro</a>', "https://example.com/docs/guide")
    assert urls == ["https://example.com/docs/guide/intro.html"]


def test_clean_urls_keeps_page_url_as_is() -> None:
    links = extract_links(
        '<a href="intro">intro</a>', "https://example.com/docs/guide", clean_urls=True
    )
    assert links[0].url == "https://example.com/docs/intro"


def test_non_http_links_are_kept_for_the_engine_to_skip() -> None:
    links = extract_links(
        '<a href="mailto:team@example.com">mail</a>', "https://example.com/"
    )
    assert links[0].link == "mailto:team@example.com"
    assert links[0].url == "mailto:team@example.com"


def test_unresolvable_links_keep_raw_text() -> None:
    links = extract_links('<a href="http://example.com:99999/">bad</a>', "https://example.com/")

    assert len(links) == 1
    assert links[0].link == "http://example.com:99999/"
    assert links[0].url is None


def test_resolve_link_rejects_hostless_http_urls() -> None:
    assert resolve_link("http://", "https://example.com/") is None
    assert resolve_link("../up.html", "https://example.com/a/b/") == "https://example.com/a/up.html"


def test_fragments_survive_resolution() -> None:
    assert _urls('<a href="#top">top</a>') == ["https://example.com/docs/page.html#top"]


def test_extract_fragment_ids_collects_ids_and_anchor_names() -> None:
    html = '<h1 id="intro">Intro</h1><a name="old-anchor"></a><div id="Main"></div>'
    assert extract_fragment_ids(html) == {"intro", "old-anchor", "Main"}


def test_is_html_content_types() -> None:
    assert is_html("text/html; charset=utf-8")
    assert is_html("application/xhtml+xml")
    assert not is_html("application/json")
    assert not is_html(None)


def test_json_ld_urls_are_extracted_with_metadata() -> None:
    html = """
    <script type="application/ld+json">
    {"@context": "https://schema.org", "@type": "Organization",
     "url": "/about", "name": "https://not-a-url-key.example.com",
     "sameAs": ["https://social.example.net/org"],
     "logo": {"@type": "ImageObject", "url": "https://cdn.example.com/logo.png"}}
    </script>
    <script type="application/ld+json">[broken</script>
    <script>var url = "https://ignored.example.com";</script>
    """
    links = extract_links(html, "https://example.com/")

    assert [link.url for link in links] == [
        "https://example.com/about",
        "https://social.example.net/org",
        "https://cdn.example.com/logo.png",
    ]
    assert links[1].metadata == {
        "tag": "script",
        "attribute": "application/ld+json",
        "property": "sameAs",
    }


def test_links_carry_element_metadata() -> None:
    links = extract_links(
        '<img src="a.png" srcset="b.png 2x"><meta property="og:image" content="/c.png">',
        "https://example.com/",
    )

    assert [link.metadata for link in links] == [
        {"tag": "img", "attribute": "src"},
        {"tag": "img", "attribute": "srcset"},
        {"tag": "meta", "attribute": "content"},
    ]
