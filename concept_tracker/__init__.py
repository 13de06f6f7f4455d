# Concept Tracker Package
# Demo catalog, favorites and engagement analytics on Supabase
from . import config
from . import errors
from . import models
from . import gateway
from . import catalog
from . import favorites
from . import analytics
from . import tracking
from . import users
from . import verify

__version__ = "1.0.0"
