"""
Feature Flags Configuration

Centralized feature flag management for the AI jury engine.
All feature flags are loaded from environment variables.
"""
import os


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


class FeatureFlags:
    """
    Feature flags for the AI jury.

    To add a new feature flag:
    1. Add it here as a class property
    2. Load it from environment variable
    3. Use it in your code
    """

    # Layer execution routes
    FEATURE_AI_JURY: bool = get_bool_env('FEATURE_AI_JURY', True)

    # Server-Sent Events stream of live progress
    FEATURE_LIVE_PROGRESS_STREAM: bool = get_bool_env('FEATURE_LIVE_PROGRESS_STREAM', True)

    # DELETE /sessions/{id} (destroys the session and every layer result)
    FEATURE_HARD_RESET: bool = get_bool_env('FEATURE_HARD_RESET', True)

    @classmethod
    def is_enabled(cls, flag_name: str) -> bool:
        """Check if a feature flag is enabled by name."""
        return bool(getattr(cls, flag_name, False))

    @classmethod
    def get_all_flags(cls) -> dict:
        """Get all feature flags and their values."""
        return {
            key: value
            for key, value in vars(cls).items()
            if key.startswith('FEATURE_')
        }


feature_flags = FeatureFlags()
