"""
HTML helpers for the `html.*` and `doc.metadata` operators.

Everything here works on a small element tree produced by the standard
library's `html.parser`:

- `readability()` extracts the main article of a page,
- `html_to_markdown()` renders an HTML fragment as Markdown,
- `page_metadata()` collects title/description/image/author/date metadata.
"""
import html as html_lib
import re
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin

DEFAULT_MARKDOWN_OPTIONS = {
    "headingStyle": "atx",
    "hr": "---",
    "bulletListMarker": "-",
    "codeBlockStyle": "fenced",
    "emDelimiter": "*",
}

VOID_TAGS = {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
BLOCK_TAGS = {"p", "div", "section", "article", "main", "header", "footer", "aside", "nav", "ul", "ol", "li",
              "pre", "blockquote", "table", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "hr", "figure"}
NOISE_TAGS = {"script", "style", "noscript", "nav", "header", "footer", "aside", "form", "iframe", "svg", "template"}
_NOISE_HINT = re.compile(r"comment|sidebar|footer|nav|menu|banner|advert|\bads?\b|share|social|related|popup", re.I)


class Element:
    __slots__ = ("tag", "attrs", "children", "parent")

    def __init__(self, tag: str, attrs: Optional[Dict[str, str]] = None, parent: Optional['Element'] = None):
        self.tag = tag
        self.attrs = attrs or {}
        self.children: List[Union['Element', str]] = []
        self.parent = parent

    def iter(self):
        yield self
        for child in self.children:
            if isinstance(child, Element):
                yield from child.iter()

    def find_all(self, tag: str) -> List['Element']:
        return [e for e in self.iter() if e.tag == tag]

    def find(self, tag: str) -> Optional['Element']:
        for e in self.iter():
            if e.tag == tag:
                return e
        return None

    def text(self) -> str:
        parts = []
        for child in self.children:
            parts.append(child if isinstance(child, str) else child.text())
        return "".join(parts)

    def __repr__(self):
        return f"<Element {self.tag}>"


class _TreeBuilder(HTMLParser):

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.root = Element("#document")
        self.current = self.root

    def handle_starttag(self, tag, attrs):
        el = Element(tag, {k: (v or "") for k, v in attrs}, self.current)
        self.current.children.append(el)
        if tag not in VOID_TAGS:
            self.current = el

    def handle_startendtag(self, tag, attrs):
        self.current.children.append(Element(tag, {k: (v or "") for k, v in attrs}, self.current))

    def handle_endtag(self, tag):
        # Close the nearest open element with this tag; stray end tags are ignored
        node = self.current
        while node is not None and node.tag != tag:
            node = node.parent
        if node is not None and node.parent is not None:
            self.current = node.parent

    def handle_data(self, data):
        self.current.children.append(data)


def parse_html(source: str) -> Element:
    builder = _TreeBuilder()
    builder.feed(source)
    builder.close()
    return builder.root


def to_html(node: Union[Element, str]) -> str:
    if isinstance(node, str):
        return html_lib.escape(node, quote=False)
    inner = "".join(to_html(c) for c in node.children)
    if node.tag == "#document":
        return inner
    attrs = "".join(f' {k}="{html_lib.escape(v)}"' for k, v in node.attrs.items())
    if node.tag in VOID_TAGS:
        return f"<{node.tag}{attrs}>"
    return f"<{node.tag}{attrs}>{inner}</{node.tag}>"


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


# ===================================================================
# Readability
# ===================================================================

def _strip_noise(node: Element) -> None:
    kept = []
    for child in node.children:
        if isinstance(child, Element):
            hint = f"{child.attrs.get('class', '')} {child.attrs.get('id', '')}"
            if child.tag in NOISE_TAGS or (child.tag not in ("article", "main", "body") and _NOISE_HINT.search(hint)):
                continue
            _strip_noise(child)
        kept.append(child)
    node.children = kept


def _absolutize(node: Element, base_url: str) -> None:
    for el in node.iter():
        for attr in ("href", "src"):
            if attr in el.attrs and base_url:
                el.attrs[attr] = urljoin(base_url, el.attrs[attr])


def _score(el: Element) -> float:
    paragraphs = [p for p in el.children if isinstance(p, Element) and p.tag == "p"]
    text = _collapse(el.text())
    return len(paragraphs) * 50 + text.count(",") * 5 + len(text) / 100


def readability(source: str, base_url: str = "") -> Optional[Dict[str, Any]]:
    """Return `{title, content, textContent, length, excerpt, siteName}` or None."""
    doc = parse_html(source)
    title_el = doc.find("title")
    title = _collapse(title_el.text()) if title_el is not None else ""
    site_name = ""
    for meta in doc.find_all("meta"):
        if meta.attrs.get("property") == "og:site_name":
            site_name = meta.attrs.get("content", "")
    body = doc.find("body") or doc
    _strip_noise(body)
    candidate = body.find("article") or body.find("main")
    if candidate is None:
        scored = [e for e in body.iter() if e.tag in ("div", "section", "td")]
        candidate = max(scored, key=_score, default=body)
        if _score(candidate) < _score(body) / 2:
            candidate = body
    text = _collapse(candidate.text())
    if not text:
        return None
    if not title:
        h1 = candidate.find("h1")
        title = _collapse(h1.text()) if h1 is not None else ""
    _absolutize(candidate, base_url)
    first_p = candidate.find("p")
    excerpt = _collapse(first_p.text()) if first_p is not None else text[:200]
    content = f"<div>{''.join(to_html(c) for c in candidate.children)}</div>"
    return {
        "title": title,
        "content": content,
        "textContent": text,
        "length": len(text),
        "excerpt": excerpt,
        "siteName": site_name or None,
    }


# ===================================================================
# Markdown
# ===================================================================

class _MarkdownWriter:

    def __init__(self, options: Dict[str, str]):
        self.options = {**DEFAULT_MARKDOWN_OPTIONS, **options}

    def block(self, nodes) -> str:
        out = "".join(self.node(n) for n in nodes)
        return re.sub(r"\n{3,}", "\n\n", out)

    def inline(self, nodes) -> str:
        return "".join(self.node(n) for n in nodes)

    def node(self, n) -> str:
        if isinstance(n, str):
            return re.sub(r"\s+", " ", n)
        o = self.options
        tag = n.tag
        if tag in NOISE_TAGS - {"header", "footer", "nav", "aside"}:
            return ""
        if re.fullmatch(r"h[1-6]", tag):
            level = int(tag[1])
            text = _collapse(self.inline(n.children))
            if o["headingStyle"] == "setext" and level < 3:
                underline = ("=" if level == 1 else "-") * len(text)
                return f"\n\n{text}\n{underline}\n\n"
            return f"\n\n{'#' * level} {text}\n\n"
        if tag == "p":
            return f"\n\n{self.inline(n.children).strip()}\n\n"
        if tag == "br":
            return "  \n"
        if tag == "hr":
            return f"\n\n{o['hr']}\n\n"
        if tag in ("em", "i"):
            return f"{o['emDelimiter']}{self.inline(n.children)}{o['emDelimiter']}"
        if tag in ("strong", "b"):
            d = o.get("strongDelimiter", "**")
            return f"{d}{self.inline(n.children)}{d}"
        if tag == "code" and (n.parent is None or n.parent.tag != "pre"):
            return f"`{n.text()}`"
        if tag == "pre":
            code = n.text()
            if o["codeBlockStyle"] == "fenced":
                fence = o.get("fence", "```")
                return f"\n\n{fence}\n{code.rstrip()}\n{fence}\n\n"
            return "\n\n" + "\n".join("    " + line for line in code.rstrip().split("\n")) + "\n\n"
        if tag == "a":
            text = self.inline(n.children)
            href = n.attrs.get("href")
            return f"[{text}]({href})" if href else text
        if tag == "img":
            return f"![{n.attrs.get('alt', '')}]({n.attrs.get('src', '')})"
        if tag == "blockquote":
            inner = self.block(n.children).strip()
            return "\n\n" + "\n".join("> " + line if line else ">" for line in inner.split("\n")) + "\n\n"
        if tag in ("ul", "ol"):
            return "\n\n" + self.list_items(n) + "\n\n"
        if tag in BLOCK_TAGS:
            return f"\n\n{self.block(n.children)}\n\n"
        return self.inline(n.children)

    def list_items(self, list_el: Element) -> str:
        lines = []
        index = int(list_el.attrs.get("start", "1") or 1)
        for child in list_el.children:
            if not isinstance(child, Element) or child.tag != "li":
                continue
            marker = f"{index}." if list_el.tag == "ol" else self.options["bulletListMarker"]
            index += 1
            body = self.block(child.children).strip()
            body = re.sub(r"\n\n+", "\n", body)
            indent = " " * (len(marker) + 1)
            lines.append(f"{marker} " + body.replace("\n", "\n" + indent))
        return "\n".join(lines)


def html_to_markdown(source: str, options: Optional[Dict[str, str]] = None) -> str:
    writer = _MarkdownWriter(options or {})
    out = writer.block(parse_html(source).children)
    # Keep two trailing spaces: they are a hard line break
    lines = [line.rstrip() if not line.endswith("  ") else line for line in out.split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip("\n")


# ===================================================================
# Metadata
# ===================================================================

_META_KEYS = {
    "title": ("og:title", "twitter:title"),
    "description": ("og:description", "twitter:description", "description"),
    "image": ("og:image", "og:image:url", "twitter:image"),
    "author": ("author", "article:author", "twitter:creator"),
    "date": ("article:published_time", "date", "dc.date", "pubdate"),
    "publisher": ("og:site_name", "application-name"),
    "url": ("og:url",),
}


def page_metadata(source: str, url: str = "") -> Dict[str, Any]:
    """Collect common metadata fields from a page's `<head>`."""
    doc = parse_html(source)
    metas: Dict[str, str] = {}
    for meta in doc.find_all("meta"):
        name = (meta.attrs.get("property") or meta.attrs.get("name") or meta.attrs.get("itemprop") or "").lower()
        if name and "content" in meta.attrs:
            metas.setdefault(name, meta.attrs["content"].strip())
    result: Dict[str, Any] = {}
    for field, keys in _META_KEYS.items():
        result[field] = next((metas[k] for k in keys if metas.get(k)), None)
    if result["title"] is None:
        title_el = doc.find("title")
        result["title"] = _collapse(title_el.text()) if title_el is not None else None
    canonical = next((l.attrs.get("href") for l in doc.find_all("link")
                      if "canonical" in l.attrs.get("rel", "").split()), None)
    result["url"] = urljoin(url, canonical or result["url"] or "") or url or None
    if result["image"]:
        result["image"] = urljoin(url, result["image"])
    html_el = doc.find("html")
    result["lang"] = html_el.attrs.get("lang") if html_el is not None else None
    return result
