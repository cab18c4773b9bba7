"""
Feature Flags Configuration

Centralized feature flag management for the rule engine.
All feature flags are loaded from environment variables.
"""
import os


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


class FeatureFlags:
    """
    Feature flags for the application.

    To add a new feature flag:
    1. Add it here as a class property
    2. Load it from environment variable
    3. Use it in your code
    """

    # Registration: approval must pass through pending_approval first
    FEATURE_PENDING_APPROVAL_GATE: bool = get_bool_env('FEATURE_PENDING_APPROVAL_GATE', False)

    # Lecturer assignment batch job
    FEATURE_AUTO_ASSIGN: bool = get_bool_env('FEATURE_AUTO_ASSIGN', True)

    # Retake requests and relaxed re-registration
    FEATURE_RETAKE_REQUESTS: bool = get_bool_env('FEATURE_RETAKE_REQUESTS', True)

    @classmethod
    def is_enabled(cls, flag_name: str) -> bool:
        """Check if a feature flag is enabled by name."""
        return getattr(cls, flag_name, False)

    @classmethod
    def get_all_flags(cls) -> dict:
        """Get all feature flags as a dictionary."""
        return {
            key: value
            for key, value in cls.__dict__.items()
            if not key.startswith('_') and isinstance(value, bool)
        }


# Singleton instance for easy importing
feature_flags = FeatureFlags()
