"""Evicts cache keys that a committed write could have made stale."""

import logging

from backend.services.cache import (
    ReadThroughCache,
    appointment_report_key,
    doctor_key,
    doctor_reports_key,
    patient_key,
    patient_reports_key,
    specializations_key,
)
from backend.services.change_feed import DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)


class CacheInvalidator:
    def __init__(self, cache: ReadThroughCache) -> None:
        self.cache = cache

    def register(self, feed: ChangeFeed) -> None:
        feed.subscribe('doctors', self.on_doctor_change)
        feed.subscribe('patients', self.on_patient_change)
        feed.subscribe('specializations', self.on_specialization_change)
        feed.subscribe('reports', self.on_report_change)

    def on_doctor_change(self, change: ChangeEvent) -> None:
        if change.operation_type in (UPDATE, DELETE):
            logger.info('Doctor %s changed; invalidating its profile and report list.', change.document_key)
            self.cache.evict(doctor_key(change.document_key), doctor_reports_key(change.document_key))

    def on_patient_change(self, change: ChangeEvent) -> None:
        if change.operation_type in (UPDATE, DELETE):
            logger.info('Patient %s changed; invalidating its profile and report list.', change.document_key)
            self.cache.evict(patient_key(change.document_key), patient_reports_key(change.document_key))

    def on_specialization_change(self, change: ChangeEvent) -> None:
        logger.info('Specialization %s %s; invalidating the list.', change.document_key, change.operation_type)
        self.cache.evict(specializations_key())

    def on_report_change(self, change: ChangeEvent) -> None:
        if change.operation_type != INSERT or not change.full_document:
            return

        report = change.full_document
        logger.info(
            'Report %s created; invalidating lists for patient %s and doctor %s.',
            change.document_key,
            report.get('patient_id'),
            report.get('doctor_id'),
        )
        self.cache.evict(
            patient_reports_key(report.get('patient_id')),
            doctor_reports_key(report.get('doctor_id')),
            appointment_report_key(report.get('appointment_id')),
        )
