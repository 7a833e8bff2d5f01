"""pilotcode: a single-conversation coding agent with native tool calls."""

__version__ = "0.1.0"


def __getattr__(name):
    # Submodules load on first attribute access so `import pilotcode` stays cheap.
    if name in ("agent", "config", "hooks", "interaction", "messages", "middleware",
                "model_calls", "protocol", "tool_handlers", "checklist"):
        import importlib
        return importlib.import_module(f".{name}", __name__)
    if name in ("run_agent", "create_state", "AgentState", "AgentOutcome"):
        from . import agent as _agent
        return getattr(_agent, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
