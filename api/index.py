import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.qrpulse.main import create_app

# Vercel's Python runtime serves the module-level ASGI `app`
app = create_app()
