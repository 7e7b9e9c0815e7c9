import os, logging, sys

logger = logging.getLogger("lustre2_mcp")

def _ensure_logger():
    """Attach a basic StreamHandler if none present.

    Done lazily so importing the module does not override host application
    logging configuration. The handler is only attached once a debug message
    is actually emitted (DEBUG_VERBOSE=1).
    """
    if logger.handlers:
        return
    logger.setLevel(logging.INFO)
    h = logging.StreamHandler(stream=sys.stdout)
    fmt = logging.Formatter('%(asctime)s %(levelname)s %(message)s')
    h.setFormatter(fmt)
    logger.addHandler(h)

def dbg(msg: str):
    """Emit a debug info line when DEBUG_VERBOSE=1.

    Set DEBUG_VERBOSE=1 in the environment of `python -m lustre_mcp.mcp_app`
    (or the FastAPI shim) to trace scans, job id switches and writer flushes.
    """
    if os.environ.get('DEBUG_VERBOSE') == '1':
        _ensure_logger()
        logger.info('[debug] %s', msg)
