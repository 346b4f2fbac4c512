"""
FPL Analyzer - entry point and re-exports.

Code lives in fpl_analyzer/ modules:
- config.py:      MODEL_CONFIG + dataclass configs
- constants.py:   API URL, position maps, parse helpers
- models.py:      enums, snapshot dataclasses, defence table, exceptions
- services.py:    HTTP client, retry/circuit breaker, FPL API fetchers
- calculators.py: defence aggregation and vulnerability scoring
- recommender.py: current gameweek, upcoming fixtures, player ranking
- analysis.py:    top scorers, value, form, differentials, team totals
- pipeline.py:    snapshot analysis (sync core + async wrapper) and serialization
- endpoints.py:   FastAPI app + API endpoints
"""

from fpl_analyzer.config import *        # noqa: F401,F403
from fpl_analyzer.constants import *     # noqa: F401,F403
from fpl_analyzer.models import *        # noqa: F401,F403
from fpl_analyzer.calculators import *   # noqa: F401,F403
from fpl_analyzer.recommender import *   # noqa: F401,F403
from fpl_analyzer.analysis import *      # noqa: F401,F403
from fpl_analyzer.pipeline import *      # noqa: F401,F403
from fpl_analyzer.endpoints import app   # noqa: F401

if __name__ == "__main__":
    import logging
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=8000)
