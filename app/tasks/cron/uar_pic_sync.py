import asyncio
from typing import Any, Dict, List

from app.db.models import UarPic
from app.models.uar_models import SyncSchedule
from app.schemas.uar_pic_schemas import UarPicRecord
from app.tasks.context import WorkerContext
from app.utils.datetime_utils import to_naive_utc


async def run_uar_pic_sync(context: WorkerContext) -> Dict[str, Any]:
    """
    Merge division PICs from every upstream source into uar_pics, once per
    sync schedule whose window contains today.

    Existing rows are never updated or deleted. A failure for one schedule
    is logged and the next schedule still runs.
    """
    log = context.log
    log.info("Checking for UAR SO Sync jobs")

    schedules = await context.repository.list_eligible_sync_schedules(
        context.clock.today()
    )
    log.info(f"Found {len(schedules)} pending sync schedules.")

    records_created = 0
    failed_schedules: List[int] = []

    for position, schedule in enumerate(schedules):
        try:
            log.info(f"Processing UAR SO Sync for: {schedule.application_id}")
            records = await fetch_all_sources(context, schedule)
            records_created += await run_create_only_sync(context, records)
        except Exception as e:
            log.opt(exception=e).error(
                f"Failed to process sync for {schedule.application_id}. Continuing..."
            )
            failed_schedules.append(schedule.id)

        if position < len(schedules) - 1:
            await asyncio.sleep(context.options.sync_delay_seconds)

    log.info(f"Processed {len(schedules)} UAR SO Sync schedules")

    return {
        "success": not failed_schedules,
        "schedules": len(schedules),
        "records_created": records_created,
        "failed_schedules": failed_schedules,
    }


async def fetch_all_sources(
    context: WorkerContext, schedule: SyncSchedule
) -> List[UarPicRecord]:
    """
    Fetch every configured source concurrently and concatenate what came back.

    A source that fails or exceeds the per-fetch timeout is logged with its
    1-based index and left out; it never cancels the others.
    """
    log = context.log
    timeout = context.options.source_timeout_seconds

    results = await asyncio.gather(
        *(
            asyncio.wait_for(source.fetch(schedule), timeout=timeout)
            for source in context.pic_sources
        ),
        return_exceptions=True,
    )

    merged: List[UarPicRecord] = []
    for index, (source, result) in enumerate(zip(context.pic_sources, results), start=1):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.TimeoutError):
                log.error(f"Failed to fetch from source {index} ({source.name}): timed out after {timeout}s")
            else:
                log.error(f"Failed to fetch from source {index} ({source.name}): {str(result)}")
            continue

        log.info(f"Successfully fetched {len(result)} records from source {index}")
        merged.extend(result)

    log.info(f"Total records grabbed: {len(merged)}")
    return merged


async def run_create_only_sync(
    context: WorkerContext, records: List[UarPicRecord]
) -> int:
    """
    Insert the records whose id is not in uar_pics yet and that carry every
    required field. Returns the number of rows created.
    """
    log = context.log
    staging = context.staging
    staging.clear()

    unique: Dict[int, UarPicRecord] = {}
    for record in records:
        if record.id is None:
            log.warning("Dropping UAR PIC record without an id")
            continue
        # First source wins for a repeated id
        unique.setdefault(record.id, record)

    existing_ids = await context.repository.list_existing_pic_ids(list(unique))
    new_records = [record for pic_id, record in unique.items() if pic_id not in existing_ids]

    for record in new_records:
        missing = record.missing_required_fields()
        if missing:
            log.warning(
                f"Dropping UAR PIC record {record.id}: missing required field {', '.join(missing)}"
            )
            continue
        staging.stage([record])

    if not len(staging):
        log.info("No new UAR PIC records to create")
        return 0

    # Source audit fields are kept as reported
    pics = [
        UarPic(
            id=record.id,
            pic_name=record.pic_name,
            division_id=record.division_id,
            mail=record.mail,
            created_by=record.created_by,
            created_at=to_naive_utc(record.created_dt),
        )
        for record in staging.records
    ]

    with context.repository.transaction():
        created = await context.repository.insert_uar_pics(pics)

    log.info(f"Created {created} new UAR PIC records")
    return created
