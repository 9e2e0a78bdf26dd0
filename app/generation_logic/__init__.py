"""Generation logic package.

Helpers that turn pipeline results into the responses served by the routes,
keeping `app/api/routes.py` focused on HTTP routing.
"""

from .exports import _csv_download_response  # noqa: F401
from .exports import _summary_download_response  # noqa: F401
from .exports import build_project_csv  # noqa: F401
