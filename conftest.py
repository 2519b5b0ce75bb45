# Ensure tests import the relay package from this service directory first,
# regardless of the directory pytest is started from.
import os
import sys

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)
