"""agentry - define and run tool-calling LLM agents with validated, retried output."""

from dotenv import load_dotenv

from .agents import *
from .drivers import *
from .exceptions import AgentDefinitionError, AgentryError, BackendError, ConfigurationError
from .infra import *

# Load environment variables from .env file
load_dotenv()

# runtime package version (from installed metadata)
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _get_version

try:
    __version__ = _get_version("agentry")
except PackageNotFoundError:
    # fallback during local editable development
    __version__ = "0.0.0"
