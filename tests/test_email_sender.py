"""
Tests for tasks/email_sender.py with aiosmtplib.SMTP patched out
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest

from core.email_composer import build_test_message
from core.exceptions import ConfigurationError, DeliveryError
from tasks.email_sender import SMTPSender


def fake_smtp(**overrides):
    smtp = AsyncMock()
    smtp.is_ehlo_or_helo_needed = False
    smtp.is_connected = True
    smtp.send_message.return_value = ({}, 'OK')
    for name, value in overrides.items():
        setattr(smtp, name, value)
    return smtp


def message():
    return build_test_message('reports@example.com', ['a@example.com'], 'Hi', 'Body')


def test_send_with_starttls_port_and_plain_auth(connection):
    smtp = fake_smtp()
    with patch('tasks.email_sender.aiosmtplib.SMTP', MagicMock(return_value=smtp)) as smtp_class:
        SMTPSender.from_connection(connection).send(message(), ['a@example.com'])

    kwargs = smtp_class.call_args.kwargs
    assert kwargs['hostname'] == 'smtp.example.com'
    assert kwargs['port'] == 587
    assert kwargs['use_tls'] is False
    smtp.connect.assert_awaited_once()
    smtp.auth_plain.assert_awaited_once_with('reports@example.com', 'secretpass')
    smtp.send_message.assert_awaited_once()
    assert smtp.send_message.call_args.kwargs['recipients'] == ['a@example.com']
    assert smtp.send_message.call_args.kwargs['sender'] == 'reports@example.com'
    smtp.quit.assert_awaited_once()


def test_port_465_uses_implicit_tls():
    smtp = fake_smtp()
    with patch('tasks.email_sender.aiosmtplib.SMTP', MagicMock(return_value=smtp)) as smtp_class:
        SMTPSender('smtp.example.com', 465, from_address='r@example.com').send(message(), ['a@example.com'])
    assert smtp_class.call_args.kwargs['use_tls'] is True


def test_no_credentials_skips_auth():
    smtp = fake_smtp()
    with patch('tasks.email_sender.aiosmtplib.SMTP', MagicMock(return_value=smtp)):
        SMTPSender('smtp.example.com', 25, from_address='r@example.com').send(message(), ['a@example.com'])
    smtp.auth_plain.assert_not_awaited()


def test_from_address_falls_back_to_user():
    assert SMTPSender('h', 587, username='user@example.com').from_address == 'user@example.com'


def test_missing_host_is_configuration_error():
    with pytest.raises(ConfigurationError):
        SMTPSender('').send(message(), ['a@example.com'])


def test_protocol_failure_is_delivery_error(connection):
    smtp = fake_smtp()
    smtp.auth_plain.side_effect = aiosmtplib.SMTPAuthenticationError(535, 'bad credentials')
    with patch('tasks.email_sender.aiosmtplib.SMTP', MagicMock(return_value=smtp)):
        with pytest.raises(DeliveryError) as excinfo:
            SMTPSender.from_connection(connection).send(message(), ['a@example.com'])

    assert excinfo.value.smtp_code == 535
    smtp.quit.assert_awaited_once()


def test_connection_failure_is_delivery_error(connection):
    smtp = fake_smtp(is_connected=False)
    smtp.connect.side_effect = aiosmtplib.SMTPConnectError('connection refused')
    with patch('tasks.email_sender.aiosmtplib.SMTP', MagicMock(return_value=smtp)):
        with pytest.raises(DeliveryError):
            SMTPSender.from_connection(connection).send(message(), ['a@example.com'])
    smtp.quit.assert_not_awaited()
