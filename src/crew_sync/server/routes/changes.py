"""Change feed endpoint polled by HTTP clients."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from crew_sync.remote.memory_remote import InMemoryRemoteStore
from crew_sync.server.dependencies import get_remote, require_token, validate_path
from crew_sync.server.models import ChangeItem, ChangesResponse

router = APIRouter(tags=["changes"], dependencies=[Depends(require_token)])


@router.get("/changes", response_model=ChangesResponse)
async def get_changes(
    remote: Annotated[InMemoryRemoteStore, Depends(get_remote)],
    collection: str = Query(..., min_length=1, max_length=512),
    since: int | None = Query(None, ge=0),
) -> ChangesResponse:
    """Changes after ``since``.

    Without ``since``, or when the hub no longer retains changes that far
    back (or the hub restarted), the full current state is returned with
    ``snapshot=true``.
    """
    path = validate_path(collection)
    retained_from = remote.oldest_retained_seq
    stale = since is None or since > remote.latest_seq or (
        retained_from is not None and since + 1 < retained_from
    )

    if stale:
        items = remote.snapshot(path)
        snapshot = True
    else:
        items = remote.changes_since(path, since)
        snapshot = False

    return ChangesResponse(
        collection=path,
        changes=[ChangeItem(path=c.path, data=c.data, seq=c.seq) for c in items],
        cursor=remote.latest_seq,
        snapshot=snapshot,
    )
