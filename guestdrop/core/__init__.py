# Core module exports
from .config import *
