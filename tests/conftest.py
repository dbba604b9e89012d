import pytest

from column_compiler.config import PipelineConfig
from column_compiler.models import ItemDescriptor

from fakes import FakeSite, article_html


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def config(tmp_path):
    cfg = PipelineConfig(
        concurrency=3,
        delay=0,
        timeout=1,
        content_timeout=0.01,
        settle_timeout=0.01,
        max_attempts=3,
        retry_base_delay=0,
        output_dir=str(tmp_path / "out"),
    )
    cfg.normalize()
    return cfg


@pytest.fixture
def make_items(site):
    """Register ``n`` well-formed articles on the fake site and return their descriptors."""

    def make(n, latency=lambda i: 0.0, pages=lambda i: 1):
        items = []
        for i in range(n):
            title = f"Article {i + 1}"
            address = f"https://time.geekbang.org/column/article/{100 + i}"
            site.add(address, html=article_html(title), latency=latency(i), pages=pages(i))
            items.append(ItemDescriptor(id=str(100 + i), title=title, address=address, original_index=i))
        return items

    return make
