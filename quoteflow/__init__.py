"""quoteflow - live market snapshot, daily history recorder and push broadcasting.

Typical embedding::

    from quoteflow import QuoteflowRuntime, QuoteflowSettings

    runtime = QuoteflowRuntime.build(QuoteflowSettings())
    await runtime.start()
"""

from quoteflow.core.config import QuoteflowSettings, get_settings
from quoteflow.core.runtime import QuoteflowRuntime

__version__ = "0.1.0"

__all__ = ["QuoteflowRuntime", "QuoteflowSettings", "get_settings", "__version__"]
