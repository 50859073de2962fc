#!/usr/bin/env python3
import argparse
import hashlib
import logging
import posixpath
import re
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union
from urllib.parse import quote, unquote, urldefrag, urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup, FeatureNotFound
from bs4.element import Tag
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# -------------------- Config --------------------

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,"
    "image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
}

MIME_EXTENSIONS = {
    "text/css": ".css",
    "text/javascript": ".js",
    "application/javascript": ".js",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/svg+xml": ".svg",
    "image/webp": ".webp",
}

HTML_TYPES = {"text/html", "application/xhtml+xml"}
ASSET_CATEGORIES = ("image", "css", "js", "font", "other")
ICON_RELS = {"icon", "apple-touch-icon"}
NON_FETCHABLE_PREFIXES = ("#", "mailto:", "tel:", "javascript:", "data:", "blob:")

# first background url() in an inline style; only the url(...) group is replaced
STYLE_BG_URL_RE = re.compile(
    r"background(?:-image)?\s*:[^;]*?"
    r"(?P<url>url\(\s*(?P<q>[\"']?)(?P<u>[^\"')\s]+)(?P=q)\s*\))",
    re.IGNORECASE,
)
INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
CHARSET_RE = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)


# -------------------- Errors --------------------


class ClonerError(Exception):
    pass


class MalformedURL(ClonerError):
    def __init__(self, reference: str, base: Optional[str] = None):
        self.reference = reference
        self.base = base
        super().__init__(f"malformed URL {reference!r} (base {base!r})")


class FetchError(ClonerError):
    def __init__(self, url: str, cause: Union[str, Exception]):
        self.url = url
        self.cause = cause
        super().__init__(f"failed to fetch {url}: {cause}")


class WriteError(ClonerError):
    def __init__(self, path: Union[str, Path], cause: Union[str, Exception]):
        self.path = path
        self.cause = cause
        super().__init__(f"failed to write {path}: {cause}")


# -------------------- Settings --------------------


@dataclass
class Settings:
    root_url: str
    output_root: Path
    max_depth: int = 2
    download_assets: bool = True
    request_timeout_ms: int = 30000

    @property
    def timeout(self) -> float:
        return self.request_timeout_ms / 1000.0


@dataclass
class PageTask:
    url: str
    depth: int


@dataclass
class CrawlSummary:
    pages_written: int = 0
    pages_failed: int = 0
    assets_downloaded: int = 0
    assets_reused: int = 0
    assets_failed: int = 0
    bytes_downloaded: int = 0
    elapsed_seconds: float = 0.0


@dataclass
class SiteInfo:
    title: str
    anchor_count: int
    image_count: int
    stylesheet_count: int
    script_count: int
    byte_size: int


# -------------------- Utils --------------------


def sanitize_filename(name: str) -> str:
    # asset names land in one flat directory per category
    cleaned = INVALID_FILENAME_CHARS_RE.sub("_", name).rstrip(" .") or "file"
    if cleaned[0] == ".":
        cleaned = "_" + cleaned[1:]
    return cleaned[:200]


def is_fetchable(ref: Optional[str]) -> bool:
    ref = (ref or "").strip()
    return bool(ref) and not ref.lower().startswith(NON_FETCHABLE_PREFIXES)


def url_hash(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()[:8]


def format_bytes(n: int) -> str:
    if n <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = 0
    size = float(n)
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{round(size, 2):g} {units[i]}"


# -------------------- URL normalize --------------------


def resolve_url(reference: str, base_url: str) -> str:
    try:
        absolute = urljoin(base_url, (reference or "").strip())
        p = urlparse(absolute)
    except ValueError as e:
        raise MalformedURL(reference, base_url) from e
    if not p.scheme or not p.netloc:
        raise MalformedURL(reference, base_url)
    return absolute


def is_internal(href: Optional[str], base_url: str, root_host: str) -> bool:
    if not href:
        return False
    href = href.strip()
    if not href or href.startswith(("#", "mailto:", "tel:")):
        return False
    try:
        host = urlparse(resolve_url(href, base_url)).hostname
    except MalformedURL:
        return False
    return host is not None and host == (root_host or "").lower()


def normalize_url(u: str) -> str:
    # page identity: no fragment, host-only URLs get the root path
    p = urlparse(u)
    return urlunparse((p.scheme, p.netloc, p.path or "/", p.params, p.query, ""))


def local_filename(url: str) -> str:
    path = urlparse(url).path
    if path in ("", "/"):
        return "index.html"
    if path.endswith("/"):
        path = path + "index.html"
    elif not posixpath.splitext(path)[1]:
        path = path + ".html"
    segs = [seg for seg in path.split("/") if seg not in ("", ".", "..")]
    return "/".join(segs) or "index.html"


def relative_href(target: str, page_file: str) -> str:
    # both arguments are output-root relative posix paths
    page_dir = posixpath.dirname(page_file)
    if not page_dir:
        return target
    return posixpath.relpath(target, page_dir)


# -------------------- HTTP --------------------


@dataclass
class FetchResult:
    url: str
    content: bytes
    content_type: str = ""
    charset: Optional[str] = None

    @property
    def mime(self) -> str:
        return self.content_type.split(";")[0].strip().lower()


def build_session(headers: Optional[Dict[str, str]] = None) -> requests.Session:
    s = requests.Session()
    # single attempt per request; failures go back to the caller
    retry = Retry(total=0, raise_on_status=False)
    adapter = HTTPAdapter(max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


def charset_from_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = CHARSET_RE.search(content_type)
    return m.group(1) if m else None


def fetch(session: requests.Session, url: str, timeout: float) -> FetchResult:
    try:
        r = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise FetchError(url, e) from e
    if not 200 <= r.status_code < 300:
        raise FetchError(url, f"HTTP {r.status_code}")
    content_type = r.headers.get("Content-Type") or ""
    return FetchResult(
        url=url,
        content=r.content,
        content_type=content_type,
        charset=charset_from_type(content_type),
    )


# -------------------- HTML utils --------------------


def bs4_parse(html: Union[str, bytes], encoding: Optional[str] = None) -> BeautifulSoup:
    kwargs = {}
    if isinstance(html, bytes) and encoding:
        kwargs["from_encoding"] = encoding
    try:
        return BeautifulSoup(html, "lxml", **kwargs)
    except FeatureNotFound:
        return BeautifulSoup(html, "html.parser", **kwargs)


def serialize_html(soup: BeautifulSoup) -> str:
    # minimal formatter: only &, < and > are escaped, text is left as parsed
    return soup.decode(formatter="minimal")


def is_html_type(content_type: str) -> bool:
    # a missing content-type is treated as HTML
    mime = content_type.split(";")[0].strip().lower()
    return not mime or mime in HTML_TYPES


# -------------------- Output --------------------


def write_file(output_root: Path, rel_path: str, data: bytes) -> Path:
    # ValueError covers paths the OS cannot represent, e.g. an embedded NUL
    try:
        root = Path(output_root).resolve()
        target = (root / rel_path).resolve()
    except (OSError, ValueError) as e:
        raise WriteError(rel_path, e) from e
    if root not in target.parents:
        raise WriteError(target, "path escapes output root")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    except (OSError, ValueError) as e:
        raise WriteError(target, e) from e
    return target


# -------------------- Asset store --------------------


class AssetStore:
    """Per-crawl map of absolute asset URL -> output-root relative path.

    An entry exists only once its download and write have both succeeded,
    so the key set is exactly the set of downloaded assets.
    """

    def __init__(self) -> None:
        self._m: Dict[str, str] = {}
        self._claimed: Set[str] = set()

    def __contains__(self, url: str) -> bool:
        return url in self._m

    def __len__(self) -> int:
        return len(self._m)

    def get(self, url: str) -> Optional[str]:
        return self._m.get(url)

    def set(self, url: str, rel_path: str) -> None:
        self._m[url] = rel_path
        self._claimed.add(rel_path)

    @property
    def downloaded(self) -> Set[str]:
        return set(self._m)

    def items(self):
        return self._m.items()

    def path_for(self, url: str, category: str, filename: str) -> str:
        rel = f"assets/{category}/{filename}"
        if rel not in self._claimed:
            return rel
        base, ext = posixpath.splitext(filename)
        return f"assets/{category}/{base}_{url_hash(url)}{ext}"


# -------------------- Extraction --------------------


@dataclass
class AssetReference:
    element: Tag
    attribute: str
    raw_url: str
    category: str
    is_style_attribute: bool = False
    original_style: Optional[str] = None


def link_category(link: Tag) -> Optional[str]:
    rels = {r.lower() for r in (link.get("rel") or [])}
    if "stylesheet" in rels:
        return "css"
    if rels & ICON_RELS:
        return "image"
    if "manifest" in rels:
        return "other"
    if "preload" in rels and (link.get("as") or "").lower() == "font":
        return "font"
    return None


def collect_asset_references(soup: BeautifulSoup) -> List[AssetReference]:
    refs: List[AssetReference] = []
    for img in soup.select("img[src]"):
        src = img.get("src")
        if is_fetchable(src):
            refs.append(AssetReference(img, "src", src.strip(), "image"))
    for link in soup.select("link[href]"):
        cat = link_category(link)
        href = link.get("href")
        if cat and is_fetchable(href):
            refs.append(AssetReference(link, "href", href.strip(), cat))
    for script in soup.select("script[src]"):
        src = script.get("src")
        if is_fetchable(src):
            refs.append(AssetReference(script, "src", src.strip(), "js"))
    for tag in soup.find_all(style=True):
        style = tag.get("style") or ""
        m = STYLE_BG_URL_RE.search(style)
        if m and is_fetchable(m.group("u")):
            refs.append(
                AssetReference(
                    tag,
                    "style",
                    m.group("u"),
                    "image",
                    is_style_attribute=True,
                    original_style=style,
                )
            )
    return refs


def guess_ext_from_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    ct = content_type.split(";")[0].strip().lower()
    return MIME_EXTENSIONS.get(ct, "")


def asset_filename(asset_url: str, content_type: Optional[str]) -> str:
    name = posixpath.basename(urlparse(asset_url).path)
    name = sanitize_filename(unquote(name)) if name else f"asset_{url_hash(asset_url)}"
    if not posixpath.splitext(name)[1]:
        name += guess_ext_from_type(content_type)
    return name


# -------------------- Rewriters --------------------


def update_asset_reference(ref: AssetReference, local_ref: str) -> None:
    local_ref = quote(local_ref.replace("\\", "/"))
    if ref.is_style_attribute:
        style = ref.original_style or ""
        m = STYLE_BG_URL_RE.search(style)
        if m is None:
            return
        ref.element["style"] = (
            style[: m.start("url")] + f"url('{local_ref}')" + style[m.end("url") :]
        )
    else:
        ref.element[ref.attribute] = local_ref


def rewrite_links(soup: BeautifulSoup, page_url: str, root_host: str) -> List[str]:
    """Point internal anchors at their local copies.

    Returns the absolute, fragment-free targets in document order, without
    duplicates.
    """
    page_file = local_filename(page_url)
    targets: List[str] = []
    for a in soup.select("a[href]"):
        href = a.get("href")
        if not is_internal(href, page_url, root_host):
            continue
        absolute = resolve_url(href, page_url)
        frag = urlparse(absolute).fragment
        target = normalize_url(absolute)
        rel = relative_href(local_filename(target), page_file)
        a["href"] = f"{rel}#{frag}" if frag else rel
        targets.append(target)
    return list(dict.fromkeys(targets))


# -------------------- Cloner --------------------


class SiteCloner:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session if session is not None else build_session()
        self.root_url = normalize_url(settings.root_url)
        self.root_host = urlparse(self.root_url).hostname or ""
        self.output_root = Path(settings.output_root)
        self.visited: Set[str] = set()
        self.assets = AssetStore()
        self.summary = CrawlSummary()

    def clone(self) -> CrawlSummary:
        started = time.monotonic()
        logging.info("cloning %s -> %s", self.root_url, self.output_root)
        # LIFO work-list: children pushed in reverse so they pop in document order
        stack: List[PageTask] = [PageTask(self.root_url, 0)]
        while stack:
            task = stack.pop()
            children = self.crawl_page(task.url, task.depth)
            stack.extend(reversed(children))
        self.summary.elapsed_seconds = time.monotonic() - started
        logging.info(
            "cloning complete: %d pages, %d assets, %d failures",
            self.summary.pages_written,
            self.summary.assets_downloaded,
            self.summary.pages_failed + self.summary.assets_failed,
        )
        return self.summary

    def crawl_page(self, url: str, depth: int) -> List[PageTask]:
        if depth > self.settings.max_depth or url in self.visited:
            return []
        logging.info("crawling (depth %d): %s", depth, url)
        try:
            result = fetch(self.session, url, self.settings.timeout)
        except FetchError as e:
            logging.error("error crawling %s: %s", url, e.cause)
            self.summary.pages_failed += 1
            return []
        self.visited.add(url)
        page_file = local_filename(url)

        if not is_html_type(result.content_type):
            logging.debug("non-html page %s (%s)", url, result.mime)
            self._save_page(page_file, result.content)
            return []

        soup = bs4_parse(result.content, result.charset)
        if self.settings.download_assets:
            self.process_assets(soup, url)
        links = rewrite_links(soup, url, self.root_host)
        self._save_page(page_file, serialize_html(soup).encode("utf-8"))

        if depth >= self.settings.max_depth:
            return []
        return [PageTask(link, depth + 1) for link in links if link not in self.visited]

    def _save_page(self, page_file: str, data: bytes) -> None:
        # hrefs keep the percent-encoded form, the file on disk is decoded
        try:
            write_file(self.output_root, unquote(page_file), data)
        except WriteError as e:
            logging.error("%s", e)
            self.summary.pages_failed += 1
            return
        self.summary.pages_written += 1

    def process_assets(self, soup: BeautifulSoup, page_url: str) -> None:
        page_file = local_filename(page_url)
        for ref in collect_asset_references(soup):
            self.download_asset(ref, page_url, page_file)

    def download_asset(self, ref: AssetReference, page_url: str, page_file: str) -> None:
        try:
            absolute = urldefrag(resolve_url(ref.raw_url, page_url))[0]
        except MalformedURL as e:
            logging.warning("skipping asset: %s", e)
            self.summary.assets_failed += 1
            return

        rel = self.assets.get(absolute)
        if rel is not None:
            logging.debug("asset cached: %s -> %s", absolute, rel)
            self.summary.assets_reused += 1
        else:
            try:
                result = fetch(self.session, absolute, self.settings.timeout)
                rel = self.assets.path_for(
                    absolute, ref.category, asset_filename(absolute, result.content_type)
                )
                write_file(self.output_root, rel, result.content)
            except ClonerError as e:
                logging.warning("failed to download asset %s: %s", ref.raw_url, e)
                self.summary.assets_failed += 1
                return
            self.assets.set(absolute, rel)
            self.summary.assets_downloaded += 1
            self.summary.bytes_downloaded += len(result.content)
            logging.info("downloaded asset: %s -> %s", absolute, rel)

        update_asset_reference(ref, relative_href(rel, page_file))


def clone_site(
    settings: Settings, session: Optional[requests.Session] = None
) -> CrawlSummary:
    return SiteCloner(settings, session).clone()


# -------------------- Analyze --------------------


def analyze_site(
    url: str, timeout: float = 30.0, session: Optional[requests.Session] = None
) -> SiteInfo:
    session = session if session is not None else build_session()
    result = fetch(session, url, timeout)
    soup = bs4_parse(result.content, result.charset)
    title = soup.title.get_text(strip=True) if soup.title else ""
    return SiteInfo(
        title=title or "No title",
        anchor_count=len(soup.select("a[href]")),
        image_count=len(soup.select("img[src]")),
        stylesheet_count=len(soup.select('link[rel~="stylesheet"]')),
        script_count=len(soup.select("script[src]")),
        byte_size=len(result.content),
    )


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Any]:
    # keys are clone option names (output, depth, assets, timeout), either at
    # top level or under [general] / [clone]
    p = Path(path)
    suf = p.suffix.lower()
    if suf == ".toml":
        import tomllib

        with p.open("rb") as f:
            data = tomllib.load(f)
    elif suf in {".yaml", ".yml"}:
        import yaml

        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    else:
        raise RuntimeError(f"clone config {p}: expected a .toml, .yaml or .yml file")
    if not isinstance(data, dict):
        raise RuntimeError(f"clone config {p}: top level must be a table of options")
    return data


# -------------------- CLI --------------------


def build_arg_parser(
    clone_defaults: Optional[Dict[str, Any]] = None,
) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="site-cloner",
        description="Clone a website into a local directory that works offline.",
    )
    sub = p.add_subparsers(dest="command", required=True)

    c = sub.add_parser("clone", help="clone a website to a local directory")
    c.add_argument("url", help="http(s) URL")
    c.add_argument("--config", type=str, default=None, help="path to config.toml|.yaml")
    c.add_argument("-o", "--output", default="./cloned-site", help="output directory")
    c.add_argument("-d", "--depth", type=int, default=2, help="max crawl depth")
    c.add_argument(
        "--no-assets",
        dest="assets",
        action="store_false",
        help="do not download images, stylesheets or scripts",
    )
    c.add_argument(
        "--timeout", type=int, default=30000, help="request timeout in milliseconds"
    )
    c.add_argument("--verbose", action="store_true", help="debug logging")
    if clone_defaults:
        c.set_defaults(**clone_defaults)

    i = sub.add_parser("info", help="report what a page references before cloning")
    i.add_argument("url", help="http(s) URL")
    i.add_argument(
        "--timeout", type=int, default=30000, help="request timeout in milliseconds"
    )
    i.add_argument("--verbose", action="store_true", help="debug logging")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if getattr(preliminary, "config", None):
        cfg = load_config_file(preliminary.config)
        flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
        for g in ("general", "clone"):
            if isinstance(cfg.get(g), dict):
                flat.update(cfg[g])
        parser = build_arg_parser(flat)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    if urlparse(args.url).scheme not in {"http", "https"} or not urlparse(args.url).netloc:
        print("Invalid URL. Use http:// or https://")
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if args.command == "info":
        try:
            info = analyze_site(args.url, timeout=max(1, args.timeout) / 1000.0)
        except FetchError as e:
            print(f"Failed to analyze website: {e.cause}")
            sys.exit(1)
        print("Website Information:")
        print(f"Title: {info.title}")
        print(f"Links found: {info.anchor_count}")
        print(f"Images found: {info.image_count}")
        print(f"Stylesheets: {info.stylesheet_count}")
        print(f"Scripts: {info.script_count}")
        print(f"Estimated size: {format_bytes(info.byte_size)}")
        return

    settings = Settings(
        root_url=args.url,
        output_root=Path(args.output).resolve(),
        max_depth=max(0, args.depth),
        download_assets=args.assets,
        request_timeout_ms=max(1, args.timeout),
    )
    summary = clone_site(settings)
    print("Cloning complete")
    print(f"Pages saved: {summary.pages_written}")
    print(f"Assets saved: {summary.assets_downloaded}")
    if summary.pages_failed or summary.assets_failed:
        print(f"Failures: {summary.pages_failed} pages, {summary.assets_failed} assets")
    print(f"Root: {settings.output_root / unquote(local_filename(settings.root_url))}")


if __name__ == "__main__":
    main()
