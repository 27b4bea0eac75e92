# ABOUTME: Version reconstruction from a decoded object's datastream versions
# ABOUTME: Groups versions by exact creation timestamp into a chronological timeline

from foxflow.models import DatastreamVersion, ObjectReference, ObjectVersionReference


def reconstruct_versions(obj: ObjectReference) -> list[ObjectVersionReference]:
    """
    Build the chronological object-version timeline.

    Versions are grouped by their CREATED string, compared exactly. FOXML
    timestamps are zero-padded ISO-8601 so string order is time order.

    Args:
        obj: Fully decoded object

    Returns:
        One ObjectVersionReference per distinct timestamp, oldest first
    """
    by_date: dict[str, list[DatastreamVersion]] = {}
    for ds_id in obj.datastream_ids():
        for version in obj.versions(ds_id):
            by_date.setdefault(version.created, []).append(version)

    dates = sorted(by_date)
    return [
        ObjectVersionReference(
            object=obj,
            version_date=date,
            changed=by_date[date],
            version_index=index,
            is_first=index == 0,
            is_last=index == len(dates) - 1,
        )
        for index, date in enumerate(dates)
    ]
