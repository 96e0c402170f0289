"""
Application runner.

Wires settings, the fleet file, the session provider, signal handling and the
interactive console together.
"""

import asyncio
from typing import Dict, Optional

from loguru import logger

from playtime_farmer.core.config.config_models import FleetConfig
from playtime_farmer.core.config.settings import FarmerSettings
from playtime_farmer.core.exceptions import ConfigurationError
from playtime_farmer.models import AccountOutcome
from playtime_farmer.services.console.farming_console import FarmingConsole, run_console
from playtime_farmer.services.farming.fleet_runner import FleetRunner
from playtime_farmer.services.session.provider import load_provider_factory

from .shutdown import set_shutdown_event, setup_signal_handlers


def resolve_provider_target(
    config: FleetConfig, settings: FarmerSettings, override: Optional[str] = None
) -> str:
    """
    Pick the provider path: command line, then fleet file, then environment.

    Raises:
        ConfigurationError: If none is configured
    """
    target = override or config.provider or settings.provider
    if not target:
        raise ConfigurationError(
            "No session provider configured. Set 'provider' in the config file "
            "or PROVIDER in the environment (format: package.module:attribute)"
        )
    return target


async def run_farm_mode(
    config: FleetConfig,
    settings: FarmerSettings,
    provider_target: Optional[str] = None,
    interactive: bool = True,
) -> Dict[str, AccountOutcome]:
    """
    Run the whole fleet until every account stops or shutdown is requested.

    Args:
        config: Validated fleet configuration
        settings: Process settings
        provider_target: Provider path overriding the configured one
        interactive: Read console commands from stdin

    Returns:
        Outcome per account

    Raises:
        ConfigurationError: If the provider cannot be resolved or loaded
    """
    factory = load_provider_factory(resolve_provider_target(config, settings, provider_target))

    shutdown_event = asyncio.Event()
    set_shutdown_event(shutdown_event)
    setup_signal_handlers(asyncio.get_running_loop())

    runner = FleetRunner(config, factory, settings, shutdown_event=shutdown_event)
    console_task = None
    if interactive:
        console = FarmingConsole(runner)
        runner.on_orchestrator = console.attach
        console_task = asyncio.create_task(run_console(runner, console), name="console")
        logger.info("Type 'help' for console commands")

    try:
        return await runner.run()
    finally:
        if console_task is not None:
            console_task.cancel()
        set_shutdown_event(None)
