DEFAULT_LIMIT = 50
MAX_LIMIT = 200

def normalize_pagination(page_raw, limit_raw, default_limit=DEFAULT_LIMIT, max_limit=MAX_LIMIT):
    """Return (page, limit, offset) for 1-based page numbers."""
    try:
        page = int(page_raw) if page_raw is not None else 1
        limit = int(limit_raw) if limit_raw is not None else default_limit
    except (TypeError, ValueError):
        raise ValueError('page/limit must be int')
    limit = max(1, min(limit, max_limit))
    page = max(1, page)
    return page, limit, (page - 1) * limit
