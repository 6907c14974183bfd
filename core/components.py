# core/components.py
"""
Auth component bundle.

Built once at startup from settings and handed to request handlers through a
FastAPI dependency. Tests build their own bundle with a fake clock, a cheap
bcrypt cost and a recording notification sink.
"""
from dataclasses import dataclass, field
from datetime import datetime

from config import AppSettings
from core.notifications import LoggingNotificationSink, NotificationSink
from core.security import (
    AuthConfig,
    Clock,
    LoginPolicy,
    PasswordVerifier,
    TokenIssuer,
    utc_clock,
)
from core.totp import TotpEngine


@dataclass
class AuthComponents:
    config: AuthConfig
    passwords: PasswordVerifier
    tokens: TokenIssuer
    totp: TotpEngine
    policy: LoginPolicy
    notifier: NotificationSink = field(default_factory=LoggingNotificationSink)
    clock: Clock = utc_clock

    def now(self) -> datetime:
        return self.clock()


def build_components(
    config: AuthConfig,
    *,
    clock: Clock = utc_clock,
    notifier: NotificationSink | None = None,
) -> AuthComponents:
    return AuthComponents(
        config=config,
        passwords=PasswordVerifier(rounds=config.bcrypt_rounds),
        tokens=TokenIssuer(config, clock=clock),
        totp=TotpEngine(
            issuer=config.totp_issuer,
            backup_code_key=config.backup_code_key,
            valid_window=config.totp_valid_window,
            backup_code_count=config.backup_code_count,
        ),
        policy=LoginPolicy(
            max_failed_attempts=config.max_failed_attempts,
            lockout_duration=config.lockout_duration,
        ),
        notifier=notifier or LoggingNotificationSink(),
        clock=clock,
    )


def build_components_from_settings(settings: AppSettings) -> AuthComponents:
    return build_components(AuthConfig.from_settings(settings))
