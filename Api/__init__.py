from .App import create_app
from .Services import FlowServices
