# gallerica - Common Utilities
#
# Shared helpers used by the daemon and the control client: logging setup,
# XDG directory resolution and systemd integration.
# Import directly from the specific module, not from this __init__.py.
#
# Example:
#   from gallerica.common.paths import state_dir
#   from gallerica.common.system import get_systemd_notifier
