"""A local proxy in front of an OpenAI-compatible completions API."""

__version__ = "0.1.0"

from .config import load_config
from .api import create_app
from .state import AppState

from .backends import call_backend
from .streaming import SSELineBuffer, StreamTranslator, translate_stream
from .stats import UsageAccumulator
from .translator import build_upstream_request, map_completion, resolve_model
from .tunnel import TunnelSupervisor
