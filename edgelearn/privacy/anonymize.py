"""
EdgeLearn Core - Anonymization Policy

One policy for everything that leaves the trainer: pattern contexts are
reduced to non-identifying flags, user ids are replaced with salted
pseudonyms, and identifying keys are dropped from log/event payloads.
"""

from typing import Any, Dict, Mapping
import hashlib

from ..core.types import PatternContext, AnonymizedContext

DEFAULT_SALT = "edgelearn"
QUIET_THRESHOLD_DB = 30.0

USER_KEYS = frozenset({"user_id", "user", "userId"})
IDENTIFYING_KEYS = frozenset({
    "location",
    "time_zone",
    "timeZone",
    "present_users",
    "presentUsers",
    "family_members",
    "familyMembers",
    "pattern_id",
    "patternId",
    "device_id",
    "email",
    "name",
    "comment",
})


def pseudonymize(value: str, salt: str = DEFAULT_SALT, prefix: str = "u_") -> str:
    """Stable salted token for an identifier."""
    digest = hashlib.blake2b(str(value).encode("utf-8"), digest_size=8, key=salt.encode("utf-8")[:64])
    return prefix + digest.hexdigest()


def scrub(payload: Mapping[str, Any], salt: str = DEFAULT_SALT) -> Dict[str, Any]:
    """Copy of ``payload`` with user ids pseudonymized and identifying keys removed."""
    clean = {}
    for key, value in payload.items():
        if key in IDENTIFYING_KEYS:
            continue
        if key in USER_KEYS and isinstance(value, str) and not _is_pseudonym(value):
            clean[key] = pseudonymize(value, salt)
        else:
            clean[key] = _scrub_value(value, salt)
    return clean


def _is_pseudonym(value: str) -> bool:
    return len(value) == 18 and value.startswith("u_") and all(c in "0123456789abcdef" for c in value[2:])


def _scrub_value(value: Any, salt: str) -> Any:
    if isinstance(value, Mapping):
        return scrub(value, salt)
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub_value(v, salt) for v in value)
    return value


def anonymize_context(context: PatternContext) -> AnonymizedContext:
    """Reduce a PatternContext to the flags the behavior model may see."""
    temporal = context.temporal
    environmental = context.environmental
    social = context.social
    device = context.device

    time_of_day = temporal.time_of_day if temporal else None
    is_weekend = temporal.day_of_week.is_weekend if temporal and temporal.day_of_week else None
    is_holiday = bool(temporal.is_holiday) if temporal else False

    has_natural_light = bool(environmental and environmental.natural_light)
    is_quiet = bool(
        environmental
        and environmental.noise_level_db is not None
        and environmental.noise_level_db < QUIET_THRESHOLD_DB
    )

    if social is not None:
        is_alone = len(social.present_users) <= 1
        family_present = bool(social.family_members) or social.social_activity == "family_time"
        guest_present = bool(social.guest_present)
        social_activity = social.social_activity
    else:
        is_alone, family_present, guest_present, social_activity = True, False, False, None

    voice_input = bool(device and device.input_method == "voice")
    is_online = bool(device and device.connectivity == "online")

    return AnonymizedContext(
        time_of_day=time_of_day,
        is_weekend=is_weekend,
        is_holiday=is_holiday,
        has_natural_light=has_natural_light,
        is_quiet=is_quiet,
        is_alone=is_alone,
        family_present=family_present,
        guest_present=guest_present,
        social_activity=social_activity,
        voice_input=voice_input,
        is_online=is_online,
    )


__all__ = [
    'DEFAULT_SALT',
    'QUIET_THRESHOLD_DB',
    'pseudonymize',
    'scrub',
    'anonymize_context',
]
