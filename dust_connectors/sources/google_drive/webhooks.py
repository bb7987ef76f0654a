#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Webhook lifecycle: change-feed subscriptions of the synced drives.

Google Drive push channels expire after a week at most. A subscription is
renewed before it expires by creating a new one and linking the old one to
it (`renewed_by_webhook_id`). Superseded subscriptions keep being accepted
until they are purged, a few days after their expiration.
"""
import uuid
from datetime import datetime, timezone

from dust_connectors.exceptions import is_authorization_error
from dust_connectors.logger import logger
from dust_connectors.protocol.connectors import SyncErrorType
from dust_connectors.utils import utc_now

RENEW_ERRORS_METRIC = "google_drive_renew_webhook_errors.count"


def webhook_address(ctx, webhook_id):
    base_url = ctx.setting("webhook_url").rstrip("/")
    secret = ctx.setting("webhook_secret")
    return f"{base_url}/webhooks/{secret}/google_drive/{webhook_id}"


async def register_webhook(ctx, connector, drive_id, is_shared_drive):
    """Opens a push channel on the change feed of `drive_id`.

    Returns:
        tuple: (webhook id, remote resource id, expiration datetime)
    """
    client = ctx.client_for(connector)
    webhook_id = uuid.uuid4().hex
    requested_expiration = utc_now() + ctx.duration("webhook_life")
    res = await client.watch_changes(
        channel_id=webhook_id,
        address=webhook_address(ctx, webhook_id),
        expiration_ms=int(requested_expiration.timestamp() * 1000),
        drive_id=drive_id,
        is_shared_drive=is_shared_drive,
    )
    expires_at = requested_expiration
    if res and res.get("expiration"):
        expires_at = datetime.fromtimestamp(
            int(res["expiration"]) / 1000, tz=timezone.utc
        )
    return webhook_id, (res or {}).get("resourceId"), expires_at


async def ensure_webhook_for_drive(
    ctx, connector, drive_id, margin, is_shared_drive=False
):
    """Makes sure `drive_id` has a subscription that does not need renewal within `margin`.

    Returns:
        str: the id of the subscription created, None if one already existed
    """
    active = await ctx.webhooks.active_for_drive(
        connector.id, drive_id, renew_after=utc_now() + margin
    )
    if active is not None:
        return None

    webhook_id, resource_id, expires_at = await register_webhook(
        ctx, connector, drive_id, is_shared_drive
    )
    await ctx.webhooks.create(
        webhook_id=webhook_id,
        connector_id=connector.id,
        drive_id=drive_id,
        expires_at=expires_at,
        renew_at=expires_at - margin,
        resource_id=resource_id,
        is_shared_drive=is_shared_drive,
    )
    connector.log_info(f"Created webhook {webhook_id} for drive {drive_id}")
    return webhook_id


async def _renew_one(ctx, webhook, margin):
    connector = await ctx.connectors.get(webhook.connector_id)
    if connector is None:
        webhook.log_critical("Connector not found for webhook")
        return
    if webhook.is_expired():
        webhook.log_error(
            f"Processing a webhook which expired at {webhook.expires_at}, it should have been renewed before"
        )

    try:
        client = ctx.client_for(connector)
        remote_drive = await client.get_object(webhook.drive_id)
        if remote_drive is None:
            webhook.log_info(
                "We lost access to the drive. Deleting the associated webhook."
            )
            await ctx.webhooks.delete_webhook(webhook.id)
            return
        new_webhook_id = await ensure_webhook_for_drive(
            ctx,
            connector,
            webhook.drive_id,
            margin,
            is_shared_drive=remote_drive.is_in_shared_drive,
        )
        if new_webhook_id is None:
            # the drive already has a fresh subscription, hand over to it
            active = await ctx.webhooks.active_for_drive(
                connector.id, webhook.drive_id, renew_after=utc_now() + margin
            )
            if active is None or active.id == webhook.id:
                webhook.log_critical(
                    "Found a webhook to renew but did not proceed to the renewal process"
                )
                return
            new_webhook_id = active.id
        await ctx.webhooks.mark_renewed(webhook.id, new_webhook_id)
    except Exception as e:
        if is_authorization_error(e):
            webhook.log_error(f"Failed to renew webhook: Oauth token revoked. {e}")
            await connector.sync_failed(SyncErrorType.OAUTH_TOKEN_REVOKED)
        else:
            webhook.log_exception(f"Failed to renew webhook: {e}")
            ctx.counters.increment(RENEW_ERRORS_METRIC)
        # keep it, but out of the renewal loop for a while
        await ctx.webhooks.postpone(webhook.id, ctx.duration("webhook_renew_cooldown"))


async def renew_expiring_webhooks(ctx, batch_size):
    """Renews the subscriptions due for renewal, at most `batch_size` of them.

    Returns:
        int: number of subscriptions processed
    """
    margin = ctx.duration("webhook_renew_margin")
    webhooks = await ctx.webhooks.expiring(lookahead=margin, limit=batch_size)
    logger.info(f"Renewing {len(webhooks)} webhooks")
    for webhook in webhooks:
        await _renew_one(ctx, webhook, margin)
    return len(webhooks)


async def purge_expired_webhooks(ctx, batch_size):
    """Deletes superseded subscriptions expired for longer than the retention window."""
    return await ctx.webhooks.purge_expired_renewed(
        ctx.duration("webhook_retention"), limit=batch_size
    )


async def renew_webhooks(ctx, batch_size):
    processed = await renew_expiring_webhooks(ctx, batch_size)
    await purge_expired_webhooks(ctx, batch_size)
    return processed


async def handle_notification(ctx, webhook_id, trigger):
    """Entry point of push notifications.

    Notifications of superseded subscriptions are still honored, they
    arrive until the channel expires.

    Args:
        trigger (callable): coroutine function launching an incremental sync for a connector id
    Returns:
        str: the connector id an incremental sync was triggered for, None if ignored
    """
    webhook = await ctx.webhooks.get(webhook_id)
    if webhook is None:
        logger.warning(f"Received a notification for unknown webhook {webhook_id}")
        return None
    if webhook.is_expired():
        webhook.log_info("Received a notification on an expired webhook")
    await trigger(webhook.connector_id)
    return webhook.connector_id


async def stop_webhooks(ctx, connector_id):
    """Closes the push channels of a connector and forgets them.

    Returns:
        int: number of subscriptions removed
    """
    connector = await ctx.get_connector(connector_id)
    client = ctx.client_for(connector)
    webhooks = await ctx.webhooks.for_connector(connector_id)
    for webhook in webhooks:
        if webhook.resource_id and not webhook.is_expired():
            try:
                await client.stop_channel(webhook.id, webhook.resource_id)
            except Exception as e:
                # the channel expires on its own anyway
                webhook.log_warning(f"Could not stop push channel: {e}")
        await ctx.webhooks.delete_webhook(webhook.id)
    return len(webhooks)
