"""Planning and checking how a container's pages are divided among children."""

from docflow.database.models import PageRange
from docflow.exceptions import InvalidSplitPlanError


def plan_ranges(
    page_count: int,
    requested: list[PageRange] | None = None,
    split_per_page: bool = True,
) -> list[PageRange]:
    """Return the child ranges for a container with page_count pages.

    An explicit plan wins. Otherwise every page becomes its own child, or the
    whole container becomes a single child when per-page splitting is off.
    """
    if page_count < 1:
        raise InvalidSplitPlanError("A container must have at least one page")
    if requested:
        ranges = sorted(requested, key=lambda item: item.page_from)
    elif split_per_page:
        ranges = [PageRange(number, number) for number in range(1, page_count + 1)]
    else:
        ranges = [PageRange(1, page_count)]
    validate_partition(ranges, page_count)
    return ranges


def validate_partition(ranges: list[PageRange], page_count: int) -> None:
    """Raise InvalidSplitPlanError unless ranges cover 1..page_count exactly once."""
    expected_start = 1
    for page_range in sorted(ranges, key=lambda item: item.page_from):
        if page_range.page_from > page_range.page_to:
            raise InvalidSplitPlanError(
                f"Range {page_range.page_from}-{page_range.page_to} is reversed"
            )
        if page_range.page_from < expected_start:
            raise InvalidSplitPlanError(
                f"Range {page_range.page_from}-{page_range.page_to} overlaps a previous range"
            )
        if page_range.page_from > expected_start:
            raise InvalidSplitPlanError(
                f"Pages {expected_start}-{page_range.page_from - 1} are not assigned to any child"
            )
        expected_start = page_range.page_to + 1
    if expected_start != page_count + 1:
        if expected_start <= page_count:
            raise InvalidSplitPlanError(
                f"Pages {expected_start}-{page_count} are not assigned to any child"
            )
        raise InvalidSplitPlanError(
            f"Ranges end at page {expected_start - 1} but the container has {page_count} pages"
        )
