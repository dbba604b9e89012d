"""Reduce fetched article markup to a small, printable HTML subset.

The sanitizer never edits the parsed input in place: it walks the source tree
and builds a fresh output tree, keeping allow-listed tags, unwrapping the rest,
dropping page chrome (navigation, comments, share bars, players) and folding
code-like fragments into ``<pre><code>`` blocks. Its own output is a fixed
point: sanitizing it again returns the same markup.
"""
import logging
import re
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from column_compiler.config import ClassificationRules, SiteProfile
from column_compiler.errors import SanitizeError
from column_compiler.models import SanitizedDocument

logger = logging.getLogger(__name__)

HEADINGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
BLOCK_TAGS = HEADINGS | {
    "p", "ul", "ol", "li", "dl", "dt", "dd", "table", "thead", "tbody", "tfoot",
    "tr", "th", "td", "caption", "pre", "blockquote", "figure", "figcaption", "hr",
}
CODE_BARRIER_TAGS = sorted(BLOCK_TAGS - {"pre"}) + ["img"]
INLINE_TAGS = {"a", "img", "br", "code", "em", "strong", "b", "i", "u", "s", "del", "sub", "sup"}
ALLOWED_TAGS = BLOCK_TAGS | INLINE_TAGS

ALLOWED_ATTRS = {
    "a": ("href",),
    "img": ("src", "alt"),
    "ol": ("start",),
    "td": ("colspan", "rowspan"),
    "th": ("colspan", "rowspan"),
}

DENIED_TAGS = {
    "script", "style", "noscript", "template", "iframe", "frame", "object", "embed",
    "nav", "header", "footer", "aside", "form", "button", "input", "select", "textarea",
    "audio", "video", "source", "track", "svg", "canvas", "link", "meta", "head", "title",
}
DENIED_ROLES = {"navigation", "banner", "complementary", "contentinfo", "dialog"}
NOISE_PATTERN = re.compile(
    r"(^|[-_])("
    r"comments?|recommend\w*|related|share|sharing|social|ads?|advert\w*|banner|"
    r"subscribe|subscription|sidebar|toc|catalog|directory|outline|navbar|breadcrumbs?|"
    r"audio|player|back-to-top|scroll-top|float-bar|fixed-bar|keyboard-wrapper|author-card"
    r")($|[-_])",
    re.IGNORECASE,
)

# Tags that should not survive with nothing inside them.
DROP_WHEN_EMPTY = HEADINGS | {
    "p", "a", "em", "strong", "b", "i", "u", "s", "del", "sub", "sup", "code",
    "blockquote", "figure", "figcaption", "li", "dt", "dd", "caption",
}
SELF_CONTAINED = ["img", "br", "hr", "table"]
# Wrappers shorter than this that mention a noise label are treated as the widget itself.
NOISE_LABEL_MAX_TEXT = 200
NOISE_LABEL_MAX_CHILDREN = 10

CODE_LINE = re.compile(
    r"([;{}()]|=>|:)\s*$"
    r"|^\s{2,}\S"
    r"|^\s*(def|class|return|import|from|function|var|let|const|if|for|while|#include|public|private)\b"
)
LAZY_SRC_ATTRS = ("data-src", "data-original", "data-lazy-src", "data-actualsrc")
FETCHABLE_SCHEMES = ("http", "https")


def normalize_code_text(text):
    """Keep line breaks, drop trailing spaces and collapse runs of blank lines."""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\xa0", " ")
    lines = []
    for line in text.split("\n"):
        line = line.rstrip()
        if not line and (not lines or not lines[-1]):
            continue
        lines.append(line)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


def _code_text(node):
    parts = []

    def walk(el):
        for child in el.children:
            if isinstance(child, PreformattedString):
                continue
            if isinstance(child, NavigableString):
                parts.append(str(child))
            elif isinstance(child, Tag):
                if child.name == "br":
                    parts.append("\n")
                    continue
                walk(child)
                if child.name in ("div", "p", "li", "tr"):
                    parts.append("\n")

    walk(node)
    return "".join(parts)


def _has_content(nodes):
    for node in nodes:
        if isinstance(node, NavigableString):
            if node.strip():
                return True
        elif isinstance(node, Tag):
            if node.name in SELF_CONTAINED or node.find(SELF_CONTAINED) is not None:
                return True
            if node.get_text().strip():
                return True
    return False


class ContentSanitizer:

    def __init__(self, profile=None, rules=None):
        self.profile = profile or SiteProfile()
        self.rules = rules or ClassificationRules()

    def sanitize(self, raw):
        source = BeautifulSoup(raw.html or "", "html.parser")
        root = self._content_root(source)
        out = BeautifulSoup("", "html.parser")
        context = _Context(out, raw.source_url)
        for node in list(root.children):
            for produced in self._transform(node, context):
                out.append(produced)

        html = str(out).strip()
        text_length = len(out.get_text().strip())
        if not text_length:
            raise SanitizeError(f"no usable text left in {raw.source_url}")
        return SanitizedDocument(
            html=html,
            source_url=raw.source_url,
            text_length=text_length,
            image_count=len(out.find_all("img")),
        )

    def _content_root(self, soup):
        for selector in self.profile.content_selectors:
            node = soup.select_one(selector)
            if node is not None:
                return node
        return soup.body or soup

    def _transform(self, node, ctx):
        if isinstance(node, PreformattedString):
            return []
        if isinstance(node, NavigableString):
            return [NavigableString(str(node))]
        if not isinstance(node, Tag):
            return []

        name = (node.name or "").lower()
        if name in DENIED_TAGS or self._is_noise(node):
            return []
        if self._looks_like_code(node, name):
            return self._code_block(node, ctx)
        if name == "img":
            return self._image(node, ctx)

        children = []
        for child in list(node.children):
            children.extend(self._transform(child, ctx))

        if name == "a":
            href = ctx.resolve(node.get("href"))
            if href is None:
                return children if _has_content(children) else []
            return self._element(name, {"href": href}, children, ctx)
        if name in ALLOWED_TAGS:
            attrs = {k: node[k] for k in ALLOWED_ATTRS.get(name, ()) if node.get(k) is not None}
            return self._element(name, attrs, children, ctx)

        # disallowed wrapper: keep what it carries, lose the tag
        return children if _has_content(children) else []

    def _element(self, name, attrs, children, ctx):
        if name in DROP_WHEN_EMPTY and not _has_content(children):
            return []
        tag = ctx.soup.new_tag(name, attrs=attrs)
        for child in children:
            tag.append(child)
        if tag.get_text().strip() in self.rules.noise_labels:
            return []
        return [tag]

    def _is_noise(self, tag):
        if tag.has_attr("hidden") or tag.get("aria-hidden") == "true":
            return True
        if (tag.get("role") or "").lower() in DENIED_ROLES:
            return True
        style = (tag.get("style") or "").replace(" ", "").lower()
        if "display:none" in style:
            return True
        tokens = list(tag.get("class") or [])
        if tag.get("id"):
            tokens.append(tag["id"])
        if any(NOISE_PATTERN.search(token) for token in tokens):
            return True
        return self._is_noise_label(tag)

    def _is_noise_label(self, tag):
        labels = self.rules.noise_labels
        if not labels:
            return False
        text = tag.get_text().strip()
        if text in labels:
            return True
        if tag.name in ALLOWED_TAGS or len(text) >= NOISE_LABEL_MAX_TEXT:
            return False
        if len(tag.find_all(True, recursive=False)) > NOISE_LABEL_MAX_CHILDREN:
            return False
        return any(label in text for label in labels)

    def _looks_like_code(self, tag, name):
        if name == "pre":
            return True
        if name in ALLOWED_TAGS and name != "code":
            return False
        text = normalize_code_text(_code_text(tag))
        if "\n" not in text:
            return False
        if name == "code":
            return True
        if tag.find(CODE_BARRIER_TAGS) is not None:
            return False
        classes = " ".join(tag.get("class") or []).lower()
        if any(hint in classes for hint in self.rules.code_class_hints):
            return True
        style = (tag.get("style") or "").lower()
        if any(hint in style for hint in self.rules.code_style_hints):
            return True
        lines = [line for line in text.split("\n") if line.strip()]
        if len(lines) < 2:
            return False
        code_like = sum(1 for line in lines if CODE_LINE.search(line))
        return code_like * 2 >= len(lines)

    def _code_block(self, tag, ctx):
        text = normalize_code_text(_code_text(tag))
        if not text.strip():
            return []
        pre = ctx.soup.new_tag("pre")
        code = ctx.soup.new_tag("code")
        code.append(NavigableString(text))
        pre.append(code)
        return [pre]

    def _image(self, tag, ctx):
        src = tag.get("src")
        lazy = next((tag.get(a) for a in LAZY_SRC_ATTRS if tag.get(a)), None)
        if lazy and (not src or src.startswith("data:")):
            src = lazy
        resolved = ctx.resolve(src, image=True)
        if resolved is None:
            logger.debug("Dropping image without a fetchable source: %r", src)
            return []
        attrs = {"src": resolved}
        if tag.get("alt") is not None:
            attrs["alt"] = tag["alt"]
        return [ctx.soup.new_tag("img", attrs=attrs)]


class _Context:

    def __init__(self, soup, base_url):
        self.soup = soup
        self.base_url = base_url

    def resolve(self, url, image=False):
        if not url:
            return None
        url = url.strip()
        if not url or url.startswith("#"):
            return None
        if url.startswith("data:"):
            return url if image and url.startswith("data:image/") else None
        if url.lower().startswith("mailto:"):
            return None if image else url
        absolute = urljoin(self.base_url or "", url)
        if urlparse(absolute).scheme not in FETCHABLE_SCHEMES:
            return None
        return absolute
