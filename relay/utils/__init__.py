from datetime import datetime, timezone


def iso_timestamp(moment: datetime | None = None) -> str:
    """UTC timestamp in the `2024-01-01T00:00:00.000Z` form browsers produce."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )
