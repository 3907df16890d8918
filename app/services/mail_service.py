from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings
from app.core.errors import SchedulerError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    mime_type: str = 'text/csv'


class MailDeliveryError(SchedulerError, RuntimeError):
    status_code = 502


class SendGridClient:
    """Posts messages to the SendGrid v3 mail/send endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.sendgrid_api_key
        self.api_base = (api_base or settings.sendgrid_api_base).rstrip('/')
        self._http = http_client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _payload(
        self,
        *,
        sender: str,
        recipient: str,
        subject: str,
        html: str,
        attachments: list[Attachment],
    ) -> dict[str, Any]:
        return {
            'personalizations': [{'to': [{'email': recipient}]}],
            'from': {'email': sender},
            'subject': subject,
            'content': [{'type': 'text/html', 'value': html}],
            'attachments': [
                {
                    'content': base64.b64encode(item.content).decode('ascii'),
                    'filename': item.filename,
                    'type': item.mime_type,
                    'disposition': 'attachment',
                }
                for item in attachments
            ],
        }

    def send(
        self,
        *,
        sender: str,
        recipient: str,
        subject: str,
        html: str,
        attachments: list[Attachment] | None = None,
    ) -> dict[str, Any]:
        if not self.configured:
            logger.warning('mail_skipped reason=missing_api_key subject=%s', subject)
            return {'sent': False, 'reason': 'missing_api_key'}
        if not sender or not recipient:
            logger.warning('mail_skipped reason=missing_address subject=%s', subject)
            return {'sent': False, 'reason': 'missing_address'}

        payload = self._payload(
            sender=sender,
            recipient=recipient,
            subject=subject,
            html=html,
            attachments=list(attachments or []),
        )
        headers = {'Authorization': f'Bearer {self.api_key}'}
        url = f'{self.api_base}/v3/mail/send'
        try:
            if self._http is not None:
                response = self._http.post(url, json=payload, headers=headers)
            else:
                response = httpx.post(url, json=payload, headers=headers, timeout=15)
        except httpx.HTTPError as exc:
            logger.exception('mail_send_failed subject=%s', subject)
            raise MailDeliveryError('Mail provider unreachable') from exc

        if response.status_code >= 300:
            logger.error('mail_send_rejected status=%s subject=%s', response.status_code, subject)
            raise MailDeliveryError(f'Mail provider returned {response.status_code}')
        logger.info('mail_sent subject=%s attachments=%s', subject, len(payload['attachments']))
        return {'sent': True, 'status_code': response.status_code}
