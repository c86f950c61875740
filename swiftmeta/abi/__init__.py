"""Swift 5 ABI record layouts and primitive readers."""

from .layouts import *
