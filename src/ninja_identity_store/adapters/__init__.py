"""Document client implementations."""

MAX_PAGE_SIZE = 1000
MIN_PAGE_SIZE = 1


def _validate_page_size(page_size: int) -> int:
    """Validate and clamp the *page_size* used for paged queries.

    Raises ``ValueError`` for non-positive values.  Values exceeding
    ``MAX_PAGE_SIZE`` (1000) are silently capped.
    """
    if page_size < MIN_PAGE_SIZE:
        raise ValueError(f"page_size must be >= {MIN_PAGE_SIZE}, got {page_size}")
    return min(page_size, MAX_PAGE_SIZE)
