from .settings import config as _real_config


class _ConfigProxy:
    """Lightweight proxy that reloads env-driven fields on each access.

    Tests that set os.environ (or monkeypatch.setenv) observe the updated
    values without a module reload.
    """

    def __getattr__(self, name):  # type: ignore[override]
        _real_config.reload_from_env()
        return getattr(_real_config, name)


config = _ConfigProxy()

__all__ = ["config"]
