from dotenv import load_dotenv

# .env must be loaded before the flag and config classes read the environment
load_dotenv()

from .feature_flags import feature_flags, FeatureFlags  # noqa: E402
from .jury_config import jury_config, JuryConfig  # noqa: E402

__all__ = ["feature_flags", "FeatureFlags", "jury_config", "JuryConfig"]
