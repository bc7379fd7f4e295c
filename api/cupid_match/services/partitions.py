from ..errors import ValidationFailedError

PARTITIONS = ("test", "production")


def resolve_partition(partition: str | None) -> bool:
    """Return the ``is_test`` flag for a partition name."""
    value = (partition or "").strip().lower()
    if value not in PARTITIONS:
        raise ValidationFailedError(
            f"Unknown partition {partition!r}",
            hint="partition must be 'test' or 'production'",
        )
    return value == "test"


def partition_label(is_test: bool) -> str:
    return "test" if is_test else "production"
