"""
Slack notifications for assignments.

Fire-and-forget: a failed notification is logged and never undoes the
assignment it describes.
"""

import logging
from typing import Optional
import httpx
from deliverease.assignment.models import TeamMember, WorkItem, AssignmentMethod
from deliverease.config import settings

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"


def _get_slack_headers() -> dict:
    """Get Slack API headers."""
    token = settings.slack_bot_token
    if not token:
        raise ValueError("SLACK_BOT_TOKEN not configured")
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json"
    }


async def notify_assignment(
    item: WorkItem,
    member: TeamMember,
    client: Optional[httpx.AsyncClient] = None,
) -> bool:
    """
    Tell a team member about a new assignment via Slack DM.

    Args:
        item: The assigned work item
        member: The assignee
        client: Optional shared HTTP client

    Returns:
        True if the notification was sent
    """
    if not member.slack_user_id:
        logger.warning(f"No Slack user ID for {member.team_member_id}, cannot send DM")
        return False

    try:
        headers = _get_slack_headers()

        payload = {
            "channel": member.slack_user_id,
            "text": _build_assignment_message(item, member),
            "blocks": _build_slack_blocks(item),
        }

        if client is None:
            async with httpx.AsyncClient(timeout=30.0) as own_client:
                response = await own_client.post(SLACK_POST_MESSAGE_URL, headers=headers, json=payload)
        else:
            response = await client.post(SLACK_POST_MESSAGE_URL, headers=headers, json=payload)

        response.raise_for_status()
        result = response.json()

        if not result.get("ok"):
            logger.error(f"Slack API error: {result.get('error', 'unknown_error')}")
            return False

        logger.info(f"Assignment notification sent to {member.team_member_id} for {item.work_item_id}")
        return True

    except Exception as e:
        logger.error(f"Failed to send assignment notification: {e}", exc_info=True)
        return False


def _build_assignment_message(item: WorkItem, member: TeamMember) -> str:
    """Build plain text assignment message."""
    action = "Quality review" if item.is_review else "Task"
    lines = [
        f"*{action} assigned*",
        f"",
        f"*Item:* {item.work_item_id}",
        f"*Title:* {item.title}",
        f"*Priority:* {item.priority.value.upper()}",
        f"*Estimate:* {item.estimated_hours:g}h",
    ]

    if item.assignment_method == AssignmentMethod.REBALANCED:
        lines.append("*Why:* moved to you to balance team workload")
    elif item.assignment_method == AssignmentMethod.ESCALATED and item.escalation_reason:
        lines.append(f"*Why:* escalated - {item.escalation_reason}")

    if item.backup_assignee_id and item.backup_assignee_id != member.team_member_id:
        lines.append(f"*Backup reviewer:* {item.backup_assignee_id}")

    return "\n".join(lines)


def _build_slack_blocks(item: WorkItem) -> list[dict]:
    """Build Slack Block Kit blocks for rich formatting."""
    blocks = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"📋 New assignment: {item.work_item_id}"
            }
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"*{item.title or item.work_item_id}*"
            }
        },
        {
            "type": "section",
            "fields": [
                {
                    "type": "mrkdwn",
                    "text": f"*Priority:*\n{item.priority.value.upper()}"
                },
                {
                    "type": "mrkdwn",
                    "text": f"*Estimate:*\n{item.estimated_hours:g}h"
                }
            ]
        }
    ]

    if item.required_skills:
        blocks.append({
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": "Skills: " + ", ".join(item.required_skills)}
            ]
        })

    blocks.append({"type": "divider"})
    return blocks
