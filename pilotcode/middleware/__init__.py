"""
Default middleware for the pilotcode runtime.

Call install_defaults() at startup to register the built-in hooks.
"""

from pilotcode.middleware import logging_hook, metrics_hook


def install_defaults(log_path=None, run_context=None):
    """Register logging and metrics hooks. Returns installed components.

    Args:
        log_path: JSONL log path; when None, logging stays off until
            logging_hook.init_logging() is called.
        run_context: Dict with run_id, model, flavor for log enrichment.
    """
    logging_hook.install(log_path=log_path, run_context=run_context or {})
    collector = metrics_hook.install()

    return {
        "metrics": collector,
    }
