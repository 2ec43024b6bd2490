"""
Aggregate bug queries built on top of the ZenTao listing endpoints.

- bug_stats: per-product totals read from ZenTao's pre-computed counters.
- my_bugs: bugs belonging to one account, found by scanning every bug of
  every product. The bug list endpoint cannot filter by assignee, so status
  and identity filtering happen client-side over the full set.

Both run strictly sequentially: products in upstream listing order, bug
pages in upstream page order.
"""

import logging
import re
from typing import Iterable, List, Optional

from .client import ZentaoClient, normalize_result, to_int
from .errors import ValidationError
from .identity import matches, normalize_account
from .pagination import fetch_all

logger = logging.getLogger(__name__)

# Which person fields each scope looks at
SCOPE_FIELDS = {
    "assigned": ("assignedTo",),
    "opened": ("openedBy",),
    "resolved": ("resolvedBy",),
    "all": ("assignedTo", "openedBy", "resolvedBy"),
}

# Fields copied into each detail item
DETAIL_FIELDS = (
    "id", "title", "product", "status", "pri", "severity",
    "assignedTo", "openedBy", "resolvedBy", "openedDate",
)

PRODUCT_PAGE_SIZE = 1000

_STATUS_SPLIT = re.compile(r"[,|]")


def parse_status_filter(status) -> Optional[List[str]]:
    """
    Normalize a status filter to an ordered list of lowercase statuses.

    Accepts a comma/pipe separated string or a sequence of strings. Returns
    None when filtering is disabled: the value "all" or an empty set.
    """
    if status is None:
        return None
    raw = list(status) if isinstance(status, (list, tuple, set)) else [status]

    statuses = []
    for entry in raw:
        if entry is None:
            continue
        for token in _STATUS_SPLIT.split(str(entry)):
            token = token.strip().lower()
            if token and token not in statuses:
                statuses.append(token)

    if not statuses or "all" in statuses:
        return None
    return statuses


def parse_product_ids(product_ids) -> Optional[set]:
    """Normalize an optional product allow-list to a set of ints."""
    if product_ids is None or product_ids == "":
        return None
    if isinstance(product_ids, (str, int)):
        product_ids = str(product_ids).split(",")
    ids = {to_int(p, None) for p in product_ids}
    ids.discard(None)
    return ids or None


def bug_stats(client: ZentaoClient, include_zero: bool = False, limit=None) -> dict:
    """
    Per-product bug totals from ZenTao's denormalized counters.

    Reads one page of products (capped at ``limit``) and trusts each
    product's ``totalBugs`` rather than scanning bugs. An upstream error on
    the product listing is returned as-is (status 0 envelope).
    """
    products_response = client.list_products(page=1, limit=to_int(limit, 1000))
    if products_response["status"] != 1:
        return products_response

    listing = products_response["result"]
    products = listing.get("products") if isinstance(listing, dict) else None
    rows = []
    total = 0

    for product in _records(products):
        total_bugs = to_int(product.get("totalBugs"), 0)
        if not include_zero and total_bugs == 0:
            continue
        total += total_bugs
        rows.append({
            "id": product.get("id"),
            "name": product.get("name"),
            "totalBugs": total_bugs,
            "unresolvedBugs": to_int(product.get("unresolvedBugs"), 0),
            "closedBugs": to_int(product.get("closedBugs"), 0),
            "fixedBugs": to_int(product.get("fixedBugs"), 0),
        })

    logger.info(f"bug_stats: {len(rows)} products, {total} bugs")
    return normalize_result({"total": total, "products": rows})


def _records(rows) -> List[dict]:
    """Keep only dict rows; anything else in an upstream listing is skipped."""
    if not isinstance(rows, list):
        return []
    records = [row for row in rows if isinstance(row, dict)]
    if len(records) != len(rows):
        logger.warning(f"Skipped {len(rows) - len(records)} malformed upstream rows")
    return records


def _bug_matches(bug: dict, account: str, fields: Iterable[str]) -> bool:
    return any(matches(bug.get(f), account) for f in fields)


def _detail(bug: dict) -> dict:
    return {key: bug.get(key) for key in DETAIL_FIELDS}


def my_bugs(client: ZentaoClient, account: Optional[str] = None, scope: str = "assigned",
            status="active", product_ids=None, include_zero: bool = False,
            per_page=100, max_items=200, include_details: bool = False) -> dict:
    """
    Bugs of one account across all products.

    ``total`` counts every match; only the ``bugs`` detail list is capped at
    ``max_items`` (first come, first served in product listing order). Any
    upstream error while scanning aborts the whole call with UpstreamError,
    since a partial scan would silently under-report.
    """
    target = normalize_account(account if account else client.account)
    if not target:
        raise ValidationError("account is required")

    scope = (scope or "assigned").strip().lower()
    if scope not in SCOPE_FIELDS:
        raise ValidationError(
            f"Invalid scope '{scope}'. Allowed values: {', '.join(SCOPE_FIELDS)}")
    fields = SCOPE_FIELDS[scope]

    statuses = parse_status_filter("active" if status is None else status)
    allowed_ids = parse_product_ids(product_ids)
    per_page = to_int(per_page, 100)
    if per_page <= 0:
        per_page = 100
    max_items = to_int(max_items, 200)

    logger.info(f"my_bugs: account={target} scope={scope} status={statuses or 'all'}")

    products = _records(fetch_all(client.fetch_products_page, "products", PRODUCT_PAGE_SIZE).items)
    if allowed_ids is not None:
        products = [p for p in products if to_int(p.get("id"), None) in allowed_ids]

    rows = []
    details = []
    total = 0

    for product in products:
        product_id = product.get("id")
        bugs = _records(fetch_all(
            lambda page, limit: client.fetch_bugs_page(product_id, page, limit),
            "bugs", per_page,
        ).items)

        count = 0
        for bug in bugs:
            if statuses is not None and str(bug.get("status") or "").strip().lower() not in statuses:
                continue
            if not _bug_matches(bug, target, fields):
                continue
            count += 1
            if include_details and len(details) < max_items:
                details.append(_detail(bug))

        logger.debug(f"my_bugs: product {product_id} scanned {len(bugs)} bugs, {count} matched")
        total += count
        if count == 0 and not include_zero:
            continue
        rows.append({
            "id": product_id,
            "name": product.get("name"),
            "totalBugs": to_int(product.get("totalBugs"), 0),
            "myBugs": count,
        })

    logger.info(f"my_bugs: {total} matches across {len(rows)} products")
    return normalize_result({
        "account": target,
        "scope": scope,
        "status": statuses if statuses is not None else "all",
        "total": total,
        "products": rows,
        "bugs": details,
    })
