"""EPUB 2 packaging of the same ordered content that goes into the merged PDF."""
import base64
import binascii
import hashlib
import html
import logging
import mimetypes
import os
import uuid
import zipfile
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup, NavigableString

from column_compiler.errors import MergeError
from column_compiler.merger import successful_results
from column_compiler.models import MergedDeliverable, OutlineEntry
from column_compiler.utils import sanitize_filename

logger = logging.getLogger(__name__)

# Fixed archive timestamp so the same content always packs to the same bytes
ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)
IMAGE_EXTS = {'.png', '.jpg', '.jpeg', '.webp', '.gif', '.svg'}
IMAGE_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome Safari',
    'Accept': 'image/avif,image/webp,image/apng,image/*,*/*;q=0.8',
}

STYLE_CSS = (
    "body{font-family:serif;line-height:1.6;}"
    "h1{font-size:1.4em;margin:1.2em 0 0.6em 0;}"
    "p{margin:0 0 0.8em 0;}"
    "pre{white-space:pre-wrap;font-family:monospace;font-size:0.85em;background:#f5f5f5;padding:0.5em;}"
    "img{max-width:100%;height:auto;}"
    "table{border-collapse:collapse;}"
    "td,th{border:1px solid #999;padding:0.2em 0.4em;}"
    ".toc ol{list-style:none;padding-left:0;}"
    ".toc li{margin:0 0 0.4em 0;}"
    ".toc a{text-decoration:none;color:inherit;}"
)

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def esc(text):
    return html.escape(text or '', quote=True)


def xhtml_doc(doc_title, body, body_class='', lang='zh'):
    class_attr = f' class="{body_class}"' if body_class else ''
    return f"""<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.1//EN"
  "http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd">
<html xmlns="http://www.w3.org/1999/xhtml" xml:lang="{lang}">
<head>
  <title>{esc(doc_title)}</title>
  <link rel="stylesheet" type="text/css" href="style.css" />
</head>
<body{class_attr}>
{body}
</body>
</html>
"""


def _infer_media_type(url, content_type=None):
    if content_type:
        media_type = content_type.split(';')[0].strip().lower()
        if media_type.startswith('image/'):
            return media_type
    ext = os.path.splitext(urlparse(url).path)[1].lower()
    if ext in IMAGE_EXTS:
        return mimetypes.types_map.get(ext, 'image/svg+xml' if ext == '.svg' else 'image/png')
    return 'image/png'


def download_image(url, referer=None, http=None, timeout=20):
    """Fetch one image; returns (bytes, media_type) or None when it cannot be had."""
    headers = dict(IMAGE_HEADERS)
    if referer:
        headers['Referer'] = referer
    getter = http or requests
    try:
        r = getter.get(url, headers=headers, timeout=timeout)
        r.raise_for_status()
    except requests.RequestException as e:
        logger.warning("Image download failed for %s: %s", url, e)
        return None
    return r.content, _infer_media_type(url, r.headers.get('Content-Type'))


def decode_data_uri(src):
    header, _, payload = src.partition(',')
    media_type = header[5:].split(';')[0] or 'image/png'
    try:
        if ';base64' in header:
            return base64.b64decode(payload, validate=False), media_type
        return payload.encode('utf-8'), media_type
    except (binascii.Error, ValueError):
        return None


class _ImageStore:

    def __init__(self, fetch_images, http):
        self.fetch_images = fetch_images
        self.http = http
        self.items = []      # (href, media_type, data)
        self._by_source = {}

    def local_href(self, src, referer):
        if src in self._by_source:
            return self._by_source[src]
        if src.startswith('data:'):
            fetched = decode_data_uri(src)
        elif self.fetch_images:
            fetched = download_image(src, referer=referer, http=self.http)
        else:
            fetched = None
        if fetched is None:
            self._by_source[src] = None
            return None
        data, media_type = fetched
        ext = mimetypes.guess_extension(media_type) or '.img'
        digest = hashlib.sha1(src.encode('utf-8')).hexdigest()[:12]
        href = f"images/img{len(self.items) + 1:03d}_{digest}{ext}"
        self.items.append((href, media_type, data))
        self._by_source[src] = href
        return href


def _chapter_body(content, referer, images):
    soup = BeautifulSoup(content or '', 'html.parser')
    for img in soup.find_all('img'):
        href = images.local_href(img.get('src', ''), referer)
        if href is None:
            img.replace_with(NavigableString(img.get('alt') or ''))
        else:
            img['src'] = href
            if img.get('alt') is None:
                img['alt'] = ''
    return str(soup)


def build_epub(results, output_dir, collection_title, fetch_images=True, http=None, lang='zh'):
    """Write ``<title>.epub`` with one chapter per successful item, in original order."""
    ordered = [r for r in successful_results(results) if r.content]
    if not ordered:
        raise MergeError("No chapter content available for the ebook.")

    book_id = f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, collection_title)}"
    images = _ImageStore(fetch_images, http)

    chapter_files = []
    outline = []
    for position, result in enumerate(ordered, start=1):
        anchor_id = f"ref-{position:03d}"
        body = _chapter_body(result.content, result.source_url, images)
        chap_body = f'  <h1 id="{anchor_id}">{esc(result.title)}</h1>\n{body}'
        filename = f"chapter{position:03d}.xhtml"
        chapter_files.append((filename, xhtml_doc(result.title, chap_body, lang=lang)))
        outline.append(OutlineEntry(title=result.title, position=position))

    title_xhtml = xhtml_doc(collection_title, f"  <h1>{esc(collection_title)}</h1>\n  <p>{len(ordered)} chapters</p>", lang=lang)

    toc_items = "\n    ".join(
        f'<li><a href="{filename}#ref-{idx:03d}">{esc(entry.title)}</a></li>'
        for idx, ((filename, _), entry) in enumerate(zip(chapter_files, outline), start=1)
    )
    toc_title = "Contents"
    toc_xhtml = xhtml_doc(toc_title, f"  <h1>{toc_title}</h1>\n  <ol>\n    {toc_items}\n  </ol>", body_class="toc", lang=lang)

    manifest_items = [
        '<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>',
        '<item id="style" href="style.css" media-type="text/css"/>',
        '<item id="title" href="title.xhtml" media-type="application/xhtml+xml"/>',
        '<item id="toc" href="toc.xhtml" media-type="application/xhtml+xml"/>',
    ]
    for idx, (href, media_type, _) in enumerate(images.items, start=1):
        manifest_items.append(f'<item id="img{idx:03d}" href="{href}" media-type="{media_type}"/>')
    spine_items = ['<itemref idref="title"/>', '<itemref idref="toc"/>']
    for idx, (filename, _) in enumerate(chapter_files, start=1):
        manifest_items.append(f'<item id="chap{idx:03d}" href="{filename}" media-type="application/xhtml+xml"/>')
        spine_items.append(f'<itemref idref="chap{idx:03d}"/>')

    opf = f"""<?xml version="1.0" encoding="utf-8"?>
<package version="2.0" unique-identifier="bookid" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:title>{esc(collection_title)}</dc:title>
    <dc:language>{lang}</dc:language>
    <dc:identifier id="bookid">{esc(book_id)}</dc:identifier>
  </metadata>
  <manifest>
    {' '.join(manifest_items)}
  </manifest>
  <spine toc="ncx">
    {' '.join(spine_items)}
  </spine>
</package>
"""

    nav_points = []
    play_order = 1
    for label, src in [(collection_title, "title.xhtml"), (toc_title, "toc.xhtml")] + [
        (entry.title, f"{filename}#ref-{idx:03d}")
        for idx, ((filename, _), entry) in enumerate(zip(chapter_files, outline), start=1)
    ]:
        nav_points.append(
            f"""<navPoint id="navpoint-{play_order}" playOrder="{play_order}">
      <navLabel><text>{esc(label)}</text></navLabel>
      <content src="{src}"/>
    </navPoint>"""
        )
        play_order += 1

    ncx = f"""<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE ncx PUBLIC "-//NISO//DTD ncx 2005-1//EN"
  "http://www.daisy.org/z3986/2005/ncx-2005-1.dtd">
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head>
    <meta name="dtb:uid" content="{esc(book_id)}"/>
    <meta name="dtb:depth" content="1"/>
    <meta name="dtb:totalPageCount" content="0"/>
    <meta name="dtb:maxPageNumber" content="0"/>
  </head>
  <docTitle><text>{esc(collection_title)}</text></docTitle>
  <navMap>
    {' '.join(nav_points)}
  </navMap>
</ncx>
"""

    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, f"{sanitize_filename(collection_title)}.epub")
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        _writestr(zf, "mimetype", "application/epub+zip", zipfile.ZIP_STORED)
        _writestr(zf, "META-INF/container.xml", CONTAINER_XML)
        _writestr(zf, "OEBPS/content.opf", opf)
        _writestr(zf, "OEBPS/toc.ncx", ncx)
        _writestr(zf, "OEBPS/style.css", STYLE_CSS)
        _writestr(zf, "OEBPS/title.xhtml", title_xhtml)
        _writestr(zf, "OEBPS/toc.xhtml", toc_xhtml)
        for filename, content in chapter_files:
            _writestr(zf, f"OEBPS/{filename}", content)
        for href, _, data in images.items:
            _writestr(zf, f"OEBPS/{href}", data)

    logger.info("Packed %d chapters into %s", len(chapter_files), path)
    return MergedDeliverable(path=path, item_count=len(chapter_files), outline_entries=outline)


def _writestr(zf, name, data, compress_type=zipfile.ZIP_DEFLATED):
    info = zipfile.ZipInfo(name, date_time=ZIP_DATE_TIME)
    info.compress_type = compress_type
    zf.writestr(info, data)
