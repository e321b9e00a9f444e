"""
Tests for services/reporter.py wiring of stores, scheduler and pipeline
"""

import json

import pytest

from conftest import RecordingSender, make_job_payload
from core.exceptions import NotFoundError, PersistenceError, ValidationError
from core.models import ConnectionConfig
from services.reporter import ReporterService


def test_create_generates_id_and_schedules(service):
    job = service.create_job(make_job_payload())
    assert job.id.startswith('job-')
    assert service.scheduler.is_scheduled(job.id)
    assert service.get_job(job.id) == job


def test_create_rejects_invalid_cron_without_side_effects(service):
    with pytest.raises(ValidationError):
        service.create_job(make_job_payload(id='job-x', cron='every day'))
    assert service.list_jobs() == []
    assert service.scheduler.active_registrations() == {}


def test_create_rejects_duplicate_id(service):
    service.create_job(make_job_payload(id='job-1'))
    with pytest.raises(ValidationError):
        service.create_job(make_job_payload(id='job-1'))


def test_update_reschedules_with_new_snapshot(service):
    service.create_job(make_job_payload(id='job-1', cron='0 9 * * *'))
    service.update_job('job-1', make_job_payload(id='other', cron='*/10 * * * *'))

    assert service.get_job('job-1').cron_expression == '*/10 * * * *'
    engine_jobs = service.scheduler.engine.get_jobs()
    assert len(engine_jobs) == 1
    assert engine_jobs[0].args[0].cron_expression == '*/10 * * * *'
    with pytest.raises(NotFoundError):
        service.get_job('other')


def test_update_unknown_job(service):
    with pytest.raises(NotFoundError):
        service.update_job('missing', make_job_payload())


def test_delete_unschedules(service):
    service.create_job(make_job_payload(id='job-1'))
    service.delete_job('job-1')
    assert service.list_jobs() == []
    assert not service.scheduler.is_scheduled('job-1')
    with pytest.raises(NotFoundError):
        service.delete_job('job-1')


def test_scheduled_failure_keeps_registration(service, render_service, sender):
    render_service.status_code = 500
    job = service.create_job(make_job_payload(id='job-1'))

    # what the engine calls on a tick
    registration = service.scheduler.engine.get_job('job-1')
    registration.func(*registration.args)

    assert sender.sent == []
    assert service.scheduler.is_scheduled(job.id)
    assert service.scheduler.engine.get_job('job-1') is not None


def test_reload_reregisters_from_disk(service, data_dir):
    service.create_job(make_job_payload(id='job-1'))
    records = json.loads((data_dir / 'jobs.json').read_text())
    records.append(make_job_payload(id='job-2', cron='15 * * * *'))
    (data_dir / 'jobs.json').write_text(json.dumps(records))

    assert service.reload() == 2
    assert sorted(service.scheduler.active_registrations()) == ['job-1', 'job-2']


def test_reload_of_corrupt_file_keeps_jobs_scheduled(service, data_dir):
    service.create_job(make_job_payload(id='job-1'))
    (data_dir / 'jobs.json').write_text('{ not json')

    with pytest.raises(PersistenceError):
        service.reload()

    assert [job.id for job in service.list_jobs()] == ['job-1']
    assert service.scheduler.is_scheduled('job-1')
    assert service.scheduler.engine.get_job('job-1') is not None


def test_start_survives_corrupt_files(tmp_path, render_service):
    (tmp_path / 'jobs.json').write_text('{ not json')
    (tmp_path / 'config.json').write_text('[1, 2')
    service = ReporterService(str(tmp_path / 'jobs.json'), str(tmp_path / 'config.json'),
                              env_defaults=ConnectionConfig(),
                              render_client=render_service.client(),
                              sender_factory=RecordingSender)
    service.start(paused=True)
    try:
        assert service.list_jobs() == []
        assert service.health()['status'] == 'ok'
        service.create_job(make_job_payload(id='job-1'))
        assert service.scheduler.is_scheduled('job-1')
    finally:
        service.shutdown(wait=True)


def test_send_test_email(service, sender):
    service.send_test_email({'recipients': ['a@example.com'], 'subject': 'Hi', 'body': 'Test'})
    message, recipients = sender.sent[0]
    assert recipients == ['a@example.com']
    assert message['Subject'] == 'Hi'
    assert message.get_content_type() == 'multipart/mixed'


def test_send_test_email_validates_recipients(service):
    with pytest.raises(ValidationError):
        service.send_test_email({'recipients': [], 'subject': 'Hi', 'body': 'Test'})


def test_version_and_health(service):
    info = service.version_info()
    assert info['startedAt'] is not None
    assert info['uptimeSeconds'] >= 0
    assert service.health()['status'] == 'ok'
