import logging
import sys

# third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "web3", "urllib3")

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    # startup can run more than once per process under uvicorn --reload
    if not any(getattr(h, "_yield_dashboard", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handler._yield_dashboard = True
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
