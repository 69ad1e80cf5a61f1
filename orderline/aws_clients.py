"""
AWS helpers for customer notifications: SES (email) and SNS (SMS).
boto3 is synchronous, so every call runs in a worker thread.
"""
import asyncio
from typing import Any

import boto3

from orderline.config import settings

_clients: dict[str, Any] = {}


def _get_client(service: str):
    if service not in _clients:
        _clients[service] = boto3.client(service, region_name=settings.aws_region)
    return _clients[service]


async def send_email(to: str, subject: str, html: str, text: str) -> str:
    """Send one email through SES. Returns the SES MessageId."""
    client = _get_client("ses")
    resp = await asyncio.to_thread(
        client.send_email,
        Source=settings.email_from,
        Destination={"ToAddresses": [to]},
        Message={
            "Subject": {"Data": subject, "Charset": "UTF-8"},
            "Body": {
                "Html": {"Data": html, "Charset": "UTF-8"},
                "Text": {"Data": text, "Charset": "UTF-8"},
            },
        },
    )
    return resp.get("MessageId", "")


async def send_sms(phone: str, message: str) -> str:
    """Send one transactional SMS through SNS. Returns the SNS MessageId."""
    client = _get_client("sns")
    resp = await asyncio.to_thread(
        client.publish,
        PhoneNumber=phone,
        Message=message,
        MessageAttributes={
            "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"},
        },
    )
    return resp.get("MessageId", "")
