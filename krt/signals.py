import signal
import logging

log = logging.getLogger(__name__)


def install_shutdown_signal_handlers():
    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)


def _shutdown(signum, frame):
    log.info('Got signal %s, shutting down', signal.Signals(signum).name)
    raise SystemExit(0)
