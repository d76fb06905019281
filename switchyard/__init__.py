"""Switchyard package exports.

Keep package import lightweight by lazily importing the orchestration
stack (and the provider SDKs behind it).
"""

from typing import TYPE_CHECKING, Any

__version__ = "0.3.0"

if TYPE_CHECKING:
    from .config import EnvironmentConfig
    from .providers.registry import ProviderCatalog
    from .services.orchestrator import CallOrchestrator

__all__ = [
    "CallOrchestrator",
    "EnvironmentConfig",
    "ProviderCatalog",
    "create_orchestrator",
    "load_environment_config",
]


def __getattr__(name: str) -> Any:
    """Lazily resolve top-level exports."""
    if name == "EnvironmentConfig":
        from .config import EnvironmentConfig

        return EnvironmentConfig

    if name == "load_environment_config":
        from .core.settings import load_environment_config

        return load_environment_config

    if name == "ProviderCatalog":
        from .providers.registry import ProviderCatalog

        return ProviderCatalog

    if name == "CallOrchestrator":
        from .services.orchestrator import CallOrchestrator

        return CallOrchestrator

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def create_orchestrator(config_path=None, config=None, persist: bool = False) -> "CallOrchestrator":
    """Build a CallOrchestrator wired to the built-in providers.

    Args:
        config_path: JSON config file to load (see core.settings lookup order)
        config: Ready-made EnvironmentConfig; skips loading when given
        persist: Save runtime configuration updates back to the config file
    """
    from .core.settings import DEFAULT_CONFIG_FILENAME, JsonConfigStore, find_config_file, load_environment_config
    from .providers.registry import ProviderCatalog
    from .services.orchestrator import CallOrchestrator

    if config is None:
        config = load_environment_config(config_path)

    store = None
    if persist:
        store = JsonConfigStore(find_config_file(config_path) or DEFAULT_CONFIG_FILENAME)

    catalog = ProviderCatalog.with_builtin_providers(safety_margin=config.context_safety_margin)
    return CallOrchestrator(config, catalog, config_store=store)
