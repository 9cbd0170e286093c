from dotenv import load_dotenv
from .telemetry.log import get_logger
from .util.config import get_local_core_config


load_dotenv()


DEFAULT_CORE_CONFIG = get_local_core_config()

LOG = get_logger(DEFAULT_CORE_CONFIG.logging_format, DEFAULT_CORE_CONFIG.logging_level)

LOG.info(f"Default Core Config: [{DEFAULT_CORE_CONFIG}]")
