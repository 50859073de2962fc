from bs4 import BeautifulSoup

from site_cloner import (
    AssetStore,
    Settings,
    SiteCloner,
    asset_filename,
    collect_asset_references,
    guess_ext_from_type,
    sanitize_filename,
)

PAGE = "http://site.test/"


def _soup(html):
    return BeautifulSoup(html, "html.parser")


def _cloner(tmp_path, session):
    return SiteCloner(Settings(root_url=PAGE, output_root=tmp_path), session=session)


def test_guess_ext_uses_fixed_table():
    assert guess_ext_from_type("image/png") == ".png"
    assert guess_ext_from_type("image/jpeg") == ".jpg"
    assert guess_ext_from_type("text/javascript; charset=utf-8") == ".js"
    assert guess_ext_from_type("application/javascript") == ".js"
    assert guess_ext_from_type("text/css") == ".css"
    assert guess_ext_from_type("image/svg+xml") == ".svg"
    assert guess_ext_from_type("image/webp") == ".webp"
    assert guess_ext_from_type("application/octet-stream") == ""
    assert guess_ext_from_type(None) == ""


def test_asset_filename():
    assert asset_filename("http://site.test/img/logo", "image/png") == "logo.png"
    assert asset_filename("http://site.test/img/logo.gif", "image/png") == "logo.gif"
    assert asset_filename("http://site.test/css/site.css?v=3", "text/css") == "site.css"
    assert asset_filename("http://site.test/img/my%20pic.jpg", "image/jpeg") == "my pic.jpg"
    assert asset_filename("http://site.test/blob", "application/x-unknown") == "blob"
    assert asset_filename("http://site.test/img/", "image/gif").startswith("asset_")
    assert asset_filename("http://site.test/img/", "image/gif").endswith(".gif")


def test_sanitize_filename():
    assert sanitize_filename('a<b>:c"d.png') == "a_b__c_d.png"
    assert sanitize_filename(".hidden") == "_hidden"
    assert sanitize_filename("") == "file"


def test_collect_asset_references_in_scan_order():
    soup = _soup(
        """
        <link rel="stylesheet" href="/css/site.css">
        <link rel="shortcut icon" href="/favicon.ico">
        <link rel="preload" as="font" href="/f/a.woff2">
        <link rel="canonical" href="/about">
        <img src="/img/logo"><img src="data:image/png;base64,AAAA">
        <script src="/js/app.js"></script><script>inline()</script>
        <div style="color: red; background-image: url(/bg.jpg)"></div>
        <div style="background: #fff url('/tile.png') repeat"></div>
        <div style="color: blue"></div>
        """
    )
    refs = collect_asset_references(soup)
    assert [(r.raw_url, r.category) for r in refs] == [
        ("/img/logo", "image"),
        ("/css/site.css", "css"),
        ("/favicon.ico", "image"),
        ("/f/a.woff2", "font"),
        ("/js/app.js", "js"),
        ("/bg.jpg", "image"),
        ("/tile.png", "image"),
    ]
    style_refs = [r for r in refs if r.is_style_attribute]
    assert all(r.attribute == "style" for r in style_refs)
    assert style_refs[0].original_style == "color: red; background-image: url(/bg.jpg)"


def test_image_without_extension_gets_type_extension(tmp_path, fake_session):
    session = fake_session({"http://site.test/img/logo": (b"\x89PNG", "image/png")})
    cloner = _cloner(tmp_path, session)
    soup = _soup('<img src="/img/logo">')

    cloner.process_assets(soup, PAGE)

    assert soup.img["src"] == "assets/image/logo.png"
    assert (tmp_path / "assets" / "image" / "logo.png").read_bytes() == b"\x89PNG"
    assert cloner.assets.get("http://site.test/img/logo") == "assets/image/logo.png"


def test_style_background_rewrite_keeps_rest_of_style(tmp_path, fake_session):
    session = fake_session({"http://site.test/bg.jpg": (b"jpg", "image/jpeg")})
    cloner = _cloner(tmp_path, session)
    soup = _soup('<div style="background-image: url(/bg.jpg)"></div>'
                 '<p style="margin: 0; background-image: url(&quot;/bg.jpg&quot;); color: red"></p>')

    cloner.process_assets(soup, PAGE)

    assert soup.div["style"] == "background-image: url('assets/image/bg.jpg')"
    assert soup.p["style"] == "margin: 0; background-image: url('assets/image/bg.jpg'); color: red"
    assert session.calls == ["http://site.test/bg.jpg"]


def test_same_asset_twice_on_one_page_downloads_once(tmp_path, fake_session):
    session = fake_session({"http://site.test/js/app.js": (b"x()", "text/javascript")})
    cloner = _cloner(tmp_path, session)
    soup = _soup('<script src="/js/app.js"></script><script src="js/app.js"></script>')

    cloner.process_assets(soup, PAGE)

    assert session.calls == ["http://site.test/js/app.js"]
    assert [s["src"] for s in soup.find_all("script")] == ["assets/js/app.js"] * 2
    assert len(cloner.assets) == 1
    assert cloner.summary.assets_downloaded == 1
    assert cloner.summary.assets_reused == 1


def test_failed_asset_leaves_reference_untouched(tmp_path, fake_session):
    session = fake_session({"http://site.test/gone.png": (b"", "text/html", 404)})
    cloner = _cloner(tmp_path, session)
    soup = _soup('<img src="/gone.png"><img src="https://cdn.test/down.png">')

    cloner.process_assets(soup, PAGE)

    assert [i["src"] for i in soup.find_all("img")] == ["/gone.png", "https://cdn.test/down.png"]
    assert "http://site.test/gone.png" not in cloner.assets
    assert cloner.summary.assets_failed == 2
    assert not (tmp_path / "assets").exists()


def test_asset_paths_relative_to_nested_page(tmp_path, fake_session):
    session = fake_session({"http://site.test/css/site.css": (b"body{}", "text/css")})
    cloner = _cloner(tmp_path, session)
    soup = _soup('<link rel="stylesheet" href="../css/site.css">')

    cloner.process_assets(soup, "http://site.test/blog/post")

    assert soup.link["href"] == "../assets/css/site.css"
    assert cloner.assets.get("http://site.test/css/site.css") == "assets/css/site.css"


def test_basename_collision_gets_hashed_name(tmp_path, fake_session):
    session = fake_session(
        {
            "http://site.test/a/logo.png": (b"a", "image/png"),
            "http://site.test/b/logo.png": (b"b", "image/png"),
        }
    )
    cloner = _cloner(tmp_path, session)
    soup = _soup('<img id="a" src="/a/logo.png"><img id="b" src="/b/logo.png">')

    cloner.process_assets(soup, PAGE)

    first, second = (i["src"] for i in soup.find_all("img"))
    assert first == "assets/image/logo.png"
    assert second.startswith("assets/image/logo_") and second.endswith(".png")
    assert (tmp_path / "assets" / "image" / "logo.png").read_bytes() == b"a"
    assert (tmp_path / second).read_bytes() == b"b"


def test_asset_store_keys_match_downloads():
    store = AssetStore()
    assert store.path_for("http://x.test/a.png", "image", "a.png") == "assets/image/a.png"
    store.set("http://x.test/a.png", "assets/image/a.png")
    assert "http://x.test/a.png" in store
    assert store.downloaded == {"http://x.test/a.png"}
    assert store.path_for("http://x.test/b/a.png", "image", "a.png") != "assets/image/a.png"


def test_asset_write_failure_leaves_reference_untouched(tmp_path, fake_session):
    (tmp_path / "assets").write_text("not a directory", encoding="utf-8")
    session = fake_session({"http://site.test/logo.png": (b"png", "image/png")})
    cloner = _cloner(tmp_path, session)
    soup = _soup('<img src="/logo.png">')

    cloner.process_assets(soup, PAGE)

    assert soup.img["src"] == "/logo.png"
    assert session.calls == ["http://site.test/logo.png"]
    assert cloner.summary.assets_failed == 1
    assert cloner.summary.assets_downloaded == 0
    assert "http://site.test/logo.png" not in cloner.assets
    assert len(cloner.assets) == 0


def test_malformed_asset_reference_is_skipped(tmp_path, fake_session):
    session = fake_session({})
    cloner = _cloner(tmp_path, session)
    soup = _soup('<img src="http://[::1"><script src="about:blank"></script>')

    cloner.process_assets(soup, PAGE)

    assert soup.img["src"] == "http://[::1"
    assert soup.script["src"] == "about:blank"
    assert session.calls == []
    assert cloner.summary.assets_failed == 2
    assert len(cloner.assets) == 0
