from decimal import Decimal, InvalidOperation

from flask import current_app

from settlement.extensions import db
from settlement.models import PlatformSetting

# Setting key -> config key used when no override row exists.
CONFIG_FALLBACKS = {
    "payment_timeout_minutes": "PAYMENT_TIMEOUT_MINUTES",
    "min_payout_amount": "MIN_PAYOUT_AMOUNT",
}


class PlatformService:
    @staticmethod
    def get_setting(key, default=None):
        setting = db.session.get(PlatformSetting, key)
        if setting:
            return setting.value
        config_key = CONFIG_FALLBACKS.get(key)
        if config_key and current_app.config.get(config_key) is not None:
            return current_app.config[config_key]
        return default

    @staticmethod
    def get_decimal(key, default):
        raw = PlatformService.get_setting(key, str(default))
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            current_app.logger.warning("Platform setting %s is not numeric: %r", key, raw)
            return Decimal(str(default))

    @staticmethod
    def set_setting(key, value, description=None):
        setting = db.session.get(PlatformSetting, key)
        if setting:
            setting.value = str(value)
            if description is not None:
                setting.description = description
        else:
            setting = PlatformSetting(key=key, value=str(value), description=description)
            db.session.add(setting)
        db.session.commit()
        return setting
