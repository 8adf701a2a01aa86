"""
ADL Contributions - Serverless Entry Point
Exposes the contributions API for the hosting platform.
"""

import os
import sys

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adl.api.main import app

handler = app
