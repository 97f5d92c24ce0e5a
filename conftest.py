# Make `import relay` and `import cookie_server` resolve to this checkout
# when tests run without an installed package.
import os
import sys

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)
