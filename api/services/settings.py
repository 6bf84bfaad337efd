"""Admin-editable system settings.

Defaults live here; each saved section is a SystemSetting row whose data
is merged over the defaults of that section.
"""

import copy
import logging
from typing import Any

from sqlalchemy.orm import Session

from ..database.models import SystemSetting

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, dict[str, Any]] = {
    "general": {
        "siteName": "TAT Paper Generator",
        "siteDescription": "Advanced paper generation platform for educational institutions",
        "contactEmail": "admin@tatpapergenerator.com",
        "supportPhone": "+1-555-0123",
        "timezone": "UTC",
        "dateFormat": "MM/DD/YYYY",
    },
    "security": {
        "passwordMinLength": 8,
        "requireTwoFactor": False,
        "sessionTimeout": 60,
        "maxLoginAttempts": 5,
        "enableAuditLog": True,
    },
    "notifications": {
        "emailNotifications": True,
        "smsNotifications": False,
        "adminAlerts": True,
        "userRegistrationAlerts": True,
        "paymentAlerts": True,
    },
    "integrations": {
        "stripeEnabled": True,
        "groqEnabled": True,
        "qdrantEnabled": True,
        "jinaEnabled": True,
    },
    "system": {
        "maintenanceMode": False,
        "debugMode": False,
        "logLevel": "info",
        "backupFrequency": "daily",
        "maxFileSize": 10,
    },
}

SECTIONS = tuple(DEFAULT_SETTINGS)


class InvalidSettingsError(ValueError):
    """Raised for an unknown section or a non-object payload."""


def get_settings(db: Session) -> dict[str, dict[str, Any]]:
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    for row in db.query(SystemSetting).all():
        if row.section in settings and isinstance(row.data, dict):
            settings[row.section].update(row.data)
    return settings


def update_settings(db: Session, section: str, data: dict[str, Any]) -> dict[str, Any]:
    """Persist `data` for `section`, returning the merged section."""
    if section not in SECTIONS:
        raise InvalidSettingsError("Invalid section")
    if not isinstance(data, dict) or not data:
        raise InvalidSettingsError("Missing section or data")

    row = db.query(SystemSetting).filter_by(section=section).first()
    if row is None:
        row = SystemSetting(section=section, data={})
        db.add(row)
    # Reassign so SQLAlchemy sees the JSON column change
    row.data = {**(row.data or {}), **data}
    db.commit()
    logger.info("Updated %s settings", section)

    return {**DEFAULT_SETTINGS[section], **row.data}
