# Common utilities
from easysend.common.config import Config as Config
from easysend.common.logging_utils import setup_logger as setup_logger
from easysend.common.scheduler import InlineScheduler as InlineScheduler
from easysend.common.scheduler import ThreadScheduler as ThreadScheduler

__all__ = ["Config", "InlineScheduler", "ThreadScheduler", "setup_logger"]
