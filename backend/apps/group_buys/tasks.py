"""
Celery tasks for group buy maintenance.
Runs periodic consistency checks and event log cleanup.
"""
from celery import shared_task
from django.conf import settings
from django.utils import timezone
from datetime import timedelta
import logging

logger = logging.getLogger(__name__)


@shared_task(name='reconcile_group_counts')
def reconcile_group_counts():
    """
    Recompute cached counts of all non-ended groups from their participants.
    Runs hourly via Celery Beat.
    """
    from apps.group_buys.models import GroupBuy
    from apps.group_buys.services.participation_service import ParticipationService

    service = ParticipationService()

    group_ids = list(
        GroupBuy.objects.exclude(
            status=GroupBuy.STATUS_ENDED
        ).values_list('id', flat=True)
    )

    corrected = 0
    failed = 0

    for group_id in group_ids:
        result = service.reconcile_group(group_id)
        if not result.success:
            failed += 1
            logger.warning(f"Could not reconcile group {group_id}: {result.error}")
        elif result.data.drift:
            corrected += 1

    logger.info(
        f"Reconciled group counts - "
        f"Checked: {len(group_ids)}, "
        f"Corrected: {corrected}, "
        f"Failed: {failed}"
    )

    return {
        'checked': len(group_ids),
        'corrected': corrected,
        'failed': failed
    }


@shared_task(name='cleanup_old_group_updates')
def cleanup_old_group_updates():
    """
    Delete group update events past the retention period.
    Runs weekly.
    """
    from apps.group_buys.models import GroupUpdate

    retention_days = getattr(settings, 'GROUP_BUY_UPDATE_RETENTION_DAYS', 30)

    try:
        cutoff_date = timezone.now() - timedelta(days=retention_days)

        deleted_count, _ = GroupUpdate.objects.filter(
            created_at__lt=cutoff_date
        ).delete()

        logger.info(f"Deleted {deleted_count} old group updates")

        return {'deleted': deleted_count}

    except Exception as e:
        logger.error(f"Error cleaning up group updates: {str(e)}")
        raise
