from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Optional

from column_compiler.models import ErrorKind

REMEDIATION_HINTS = {
    ErrorKind.AUTH_OR_PERMISSION: "mostly AuthOrPermission: refresh your cookie or check the subscription",
    ErrorKind.TIMEOUT: "mostly Timeout: raise --timeout or lower --concurrency",
    ErrorKind.NOT_FOUND: "mostly NotFound: the collection URL or article ids may be stale",
    ErrorKind.EMPTY_CONTENT: "mostly EmptyContent: the content selectors no longer match the page",
    ErrorKind.RENDER_FAILURE: "mostly RenderFailure: check free disk space and the Chromium install",
    ErrorKind.CANCELLED: "run was interrupted: re-run to fetch the remaining items",
}


@dataclass
class RunSummary:
    succeeded: int
    failed: int
    by_kind: Dict[ErrorKind, int] = field(default_factory=dict)
    hint: Optional[str] = None

    @property
    def total(self):
        return self.succeeded + self.failed


def summarize(results):
    succeeded = sum(1 for r in results if r.success)
    kinds = Counter(r.error_kind for r in results if not r.success)
    failed = sum(kinds.values())
    hint = None
    if failed:
        kind, count = max(kinds.items(), key=lambda kv: (kv[1], kv[0].value))
        if count * 2 > failed:
            hint = REMEDIATION_HINTS.get(kind)
    return RunSummary(succeeded=succeeded, failed=failed, by_kind=dict(kinds), hint=hint)
