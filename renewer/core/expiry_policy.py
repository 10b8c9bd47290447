"""Expiry-driven renewal decision."""

from datetime import datetime, timedelta, timezone

from models.certificate import CertificateDescriptor


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def renewal_date(expires_on: datetime, lead_days: int) -> datetime:
    """Instant after which a certificate expiring at expires_on is due for renewal."""
    return _as_utc(expires_on) - timedelta(days=lead_days)


def needs_renewal(descriptor: CertificateDescriptor | None, lead_days: int, now: datetime) -> bool:
    """
    Decide whether the stored certificate must be renewed.

    A missing descriptor or a descriptor without an expiry always needs
    renewal. Otherwise renewal is due strictly after expiry minus
    lead_days; at exactly the threshold the certificate is still kept.
    Naive datetimes are read as UTC.
    """
    if descriptor is None or descriptor.expires_on is None:
        return True
    return _as_utc(now) > renewal_date(descriptor.expires_on, lead_days)
