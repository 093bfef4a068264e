"""Process entry point shared by operators built on the controller."""

import argparse
import logging
import signal
import threading
from typing import Callable, List, Optional

from .config import load_settings
from .controller import Controller
from .handler import OperationHandler
from .log import configure_logging
from .resource import CustomResource, ResourceDescriptor

logger = logging.getLogger(__name__)


def build_parser(name: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=name, description=f"Run the {name} operator.")
    parser.add_argument(
        "namespace",
        nargs="?",
        default=None,
        help="namespace to watch (default: from settings, else 'default')",
    )
    parser.add_argument("--config", default=None, help="path of a yaml settings file")
    return parser


def _install_signal_handlers(controller: Controller) -> None:
    if threading.current_thread() is not threading.main_thread():
        return

    def _stop(signum, frame):
        logger.warning("Received signal %s", signal.Signals(signum).name)
        controller.stop()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)


def run_operator(
    name: str,
    descriptor: ResourceDescriptor,
    handler_factory: Callable[[], OperationHandler],
    resource_class=CustomResource,
    argv: Optional[List[str]] = None,
    controller_class=Controller,
) -> int:
    """Parse arguments, configure logging and run a controller until stopped."""
    args = build_parser(name).parse_args(argv)
    settings = load_settings(args.config)
    if args.namespace:
        settings.namespace = args.namespace
    configure_logging(settings.log_level, settings.log_file)

    try:
        logger.info("=== %s STARTING for namespace %s ===", name, settings.namespace)
        controller = controller_class(
            descriptor,
            handler_factory(),
            namespace=settings.namespace,
            resource_class=resource_class,
            watch_timeout=settings.watch_timeout or None,
            workers=settings.workers,
            in_cluster=settings.in_cluster,
            kubeconfig=settings.kubeconfig,
        )
        _install_signal_handlers(controller)
        controller.start()
        logger.info("=== %s STARTED ===", name)
        controller.wait()
    except Exception:
        logger.critical("%s failed", name, exc_info=True)
        raise
    finally:
        logger.warning("=== %s TERMINATING ===", name)
    return 0
