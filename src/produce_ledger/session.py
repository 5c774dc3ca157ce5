"""Session bootstrap for the produce ledger.

A session bundles the resolved settings with the objects one user works
with: the persistence gateway, the ledger store and the controller that owns
them. Front-ends build one session at start-up and pass it around instead of
reaching for module-level state.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from . import attach_file_handler, data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION
from .controller import LedgerController
from .gateway import BackgroundSaver, PersistenceGateway, build_gateway
from .ledger import LedgerStore


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the live objects of one session."""

    settings: data_manager.ConfigSettings
    gateway: PersistenceGateway
    controller: LedgerController

    @property
    def store(self) -> LedgerStore:
        return self.controller.store


def ensure_schema_version(settings: data_manager.ConfigSettings) -> None:
    """Refuse to run against a configuration written for another schema.

    Raises:
        RuntimeError: If ``SchemaVersion`` in ``config.ini`` does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            settings.schema_version,
        )
        raise RuntimeError(
            "Schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, settings.schema_version)
        )

    log.debug("Schema version '%s' validated", settings.schema_version)


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    background: bool = True,
    **controller_options: Any,
) -> RuntimeContext:
    """Resolve settings, build the gateway and controller, and load the ledger.

    Package logs are also written to ``produce_ledger.log`` under the
    configured ``[System] LogDir`` from this point on.

    Args:
        config_path (Path | None): Optional explicit ``config.ini`` location.
        background (bool): Run saves on a worker thread (interactive
            front-ends) or inline (one-shot commands).
        **controller_options: Forwarded to :class:`LedgerController`, e.g.
            render and notification hooks or a fixed clock.

    Raises:
        FileNotFoundError: If the configuration cannot be located.
        KeyError: When mandatory configuration options are missing.
        RuntimeError: On a schema version mismatch.
    """

    settings = data_manager.load_settings(config_path)
    attach_file_handler(settings.log_dir)
    ensure_schema_version(settings)
    gateway = build_gateway(settings)
    controller = LedgerController(
        LedgerStore(),
        gateway,
        saver=BackgroundSaver(gateway, background=background),
        currency=settings.currency,
        **controller_options,
    )
    controller.load()
    log.info("Session ready for '%s' with %d transactions", settings.shop_name, len(controller.store))
    return RuntimeContext(settings=settings, gateway=gateway, controller=controller)
