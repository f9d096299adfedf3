"""
System constants that should never change.

These are technical/system limits, not user preferences.
User-configurable values should go in config.yaml instead.
"""

VERBOSE_LOGGING_THRESHOLD = 2  # -vv switches to DEBUG with logger names

CONFIG_DIR_NAME = "mvx"
CONFIG_FILE_NAME = "config.yaml"

PLAN_SEPARATOR = "---"  # Between text plans in batch --plan output
